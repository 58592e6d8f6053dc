from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

from .compare import compare_recipe
from .core import run_recipe


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "recipe",
        help="Path to a recipe (YAML), e.g. recipes/default.yml",
    )
    parser.add_argument(
        "--out",
        help="Optional: write the JSON result to this file",
        default=None,
    )
    parser.add_argument(
        "--pretty",
        help="Pretty-print the JSON output",
        action="store_true",
    )
    parser.add_argument(
        "--log-level",
        help="Logging level (DEBUG, INFO, WARNING, ...)",
        default="WARNING",
    )


def main(argv: list[str] | None = None) -> None:
    args_list = list(argv) if argv is not None else None
    if args_list is None:
        import sys

        args_list = sys.argv[1:]

    if args_list and args_list[0] == "compare":
        parser = argparse.ArgumentParser(
            prog="calmag compare",
            description="CalMag – compare all fertilizers for one water source",
        )
        _add_common_arguments(parser)
        args = parser.parse_args(args_list[1:])
        run = compare_recipe
    else:
        parser = argparse.ArgumentParser(
            prog="calmag",
            description="CalMag – weekly calcium/magnesium dosing plan for a recipe",
        )
        _add_common_arguments(parser)
        args = parser.parse_args(args_list)
        run = run_recipe

    logging.basicConfig(level=str(args.log_level).upper(), format="%(levelname)s %(name)s: %(message)s")
    recipe_path = Path(args.recipe).expanduser().resolve()
    result = run(recipe_path)

    if args.pretty:
        text = json.dumps(result, indent=2, ensure_ascii=False)
    else:
        text = json.dumps(result, ensure_ascii=False)

    print(text)

    if args.out:
        out_path = Path(args.out).expanduser().resolve()
        out_path.parent.mkdir(parents=True, exist_ok=True)
        out_path.write_text(text + "\n", encoding="utf-8")


if __name__ == "__main__":
    main()
