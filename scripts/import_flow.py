# scripts/import_flow.py
"""
Import a bot flow from a JSON definition exported by the flow editor.

Usage:
    python scripts/import_flow.py greeting.json --tenant acme --instance 1234567890
"""
import argparse
import json
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from pydantic import ValidationError

from app.core.config import DEFAULT_TENANT_ID, DEFAULT_INSTANCE_ID
from app.db.session import get_db_session, test_db_connection, init_db
from app.schemas.flow import FlowDefinition
from app.services.flow_service import FlowService, FlowDefinitionError


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Import a WhatsApp bot flow")
    parser.add_argument("file", help="JSON flow definition")
    parser.add_argument("--tenant", default=DEFAULT_TENANT_ID, help="tenant id")
    parser.add_argument("--instance", default=None, help="instance id (overrides the file)")
    state = parser.add_mutually_exclusive_group()
    state.add_argument("--activate", dest="active", action="store_true", default=None)
    state.add_argument("--inactive", dest="active", action="store_false")
    args = parser.parse_args(argv)

    print("=" * 60)
    print("Importing flow")
    print("=" * 60)

    try:
        raw = json.loads(Path(args.file).read_text(encoding="utf-8"))
        definition = FlowDefinition.model_validate(raw)
    except (OSError, json.JSONDecodeError) as e:
        print(f"[ERROR] Cannot read {args.file}: {e}")
        return 1
    except ValidationError as e:
        print(f"[ERROR] Invalid flow definition:\n{e}")
        return 1
    print(f"[OK] Definition '{definition.name}': {len(definition.nodes)} nodes, {len(definition.edges)} edges")

    if args.active is not None:
        definition.is_active = args.active

    if not test_db_connection():
        print("[ERROR] Database connection failed! Check .env configuration")
        return 1
    init_db()

    instance_id = args.instance or definition.instance_id or DEFAULT_INSTANCE_ID
    try:
        with get_db_session() as db:
            flow = FlowService.import_definition(db, args.tenant, definition, instance_id=instance_id)
            print(f"[OK] Flow stored with id {flow.id} (instance {flow.instance_id}, "
                  f"{'active' if flow.is_active else 'inactive'})")
    except FlowDefinitionError as e:
        print(f"[ERROR] {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
