from __future__ import annotations

import argparse

from bastion.core.classification.engine import ClassificationEngine
from bastion.core.classification.loader import load_classification_config
from bastion.core.classification.store import ClassificationStore
from bastion.core.config.manager import get_config


def main() -> int:
    ap = argparse.ArgumentParser(description="Seed built-in classification rules")
    ap.add_argument("--root", default=".")
    args = ap.parse_args()

    cm = get_config(root=args.root)
    cfg, failsafe, err = load_classification_config(cm)
    if failsafe:
        print(f"classification.json invalid: {err}")
        return 2
    store = ClassificationStore(db_path=cm.resolve_path(cm.get().db_path))
    engine = ClassificationEngine(store=store, cfg=cfg)
    n = engine.seed_builtin_rules()
    print(f"seeded={n} total_builtin={sum(1 for r in store.list_rules(None) if r.is_builtin)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
