# scripts/list_executions.py
"""
List executions of a flow, newest first. Failed runs are only visible here.

Usage:
    python scripts/list_executions.py 12 --status failed --limit 20
"""
import argparse
import json
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.core.config import FLOW_EXECUTIONS_LIMIT
from app.db.session import get_db_session, test_db_connection
from app.models.flow_execution import ExecutionStatus
from app.schemas.flow import FlowExecutionResponse
from app.services.flow_service import FlowService


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="List executions of a flow")
    parser.add_argument("flow_id", type=int)
    parser.add_argument("--status", choices=[s.value for s in ExecutionStatus])
    parser.add_argument("--limit", type=int, default=FLOW_EXECUTIONS_LIMIT)
    parser.add_argument("--json", action="store_true", help="dump full execution records as JSON")
    args = parser.parse_args(argv)

    if not test_db_connection():
        print("[ERROR] Database connection failed! Check .env configuration")
        return 1

    with get_db_session() as db:
        flow = FlowService.get_flow(db, args.flow_id)
        if not flow:
            print(f"[ERROR] Flow {args.flow_id} not found")
            return 1

        total = FlowService.count_executions(db, flow.id, args.status)
        executions = FlowService.list_executions(db, flow.id, status=args.status, limit=args.limit)

        if args.json:
            print(json.dumps([execution.to_dict() for execution in executions], indent=2, default=str))
            return 0

        print("=" * 60)
        print(f"Flow {flow.id}: {flow.name} ({total} executions"
              f"{', status=' + args.status if args.status else ''})")
        print("=" * 60)
        for execution in executions:
            row = FlowExecutionResponse.model_validate(execution)
            print(f"#{row.id:<6} conv={row.conversation_id:<6} {row.status:<10} "
                  f"node={row.current_node_id or '-':<15} started={row.started_at:%Y-%m-%d %H:%M:%S}")
            if row.error_message:
                print(f"        error: {row.error_message}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
