from __future__ import annotations

import argparse
import json
import os

from bastion.core.classification.engine import ClassificationEngine
from bastion.core.classification.loader import load_classification_config
from bastion.core.classification.store import ClassificationStore
from bastion.core.config.manager import get_config


def main() -> int:
    ap = argparse.ArgumentParser(description="Bastion classification report")
    ap.add_argument("org_id")
    ap.add_argument("--root", default=".")
    ap.add_argument("--compliance", action="store_true", help="full compliance report instead of the summary")
    args = ap.parse_args()

    cm = get_config(root=args.root, read_only=True)
    db_path = cm.resolve_path(cm.get().db_path)
    if not os.path.exists(db_path):
        print(f"no classification database at {db_path}")
        return 2
    cfg, failsafe, _err = load_classification_config(cm)
    # read-only: no seeding, no event log
    engine = ClassificationEngine(store=ClassificationStore(db_path=db_path), cfg=cfg)
    if args.compliance:
        out = engine.compliance_report(args.org_id)
    else:
        out = engine.summarize(args.org_id)
    print(json.dumps(out.model_dump(mode="json"), indent=2, sort_keys=True))
    return 2 if failsafe else 0


if __name__ == "__main__":
    raise SystemExit(main())
