"""Command line front-end: ``python -m chibi_lab <command> ...``."""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Optional, Sequence

from .config import AppConfig, resolve_config
from .errors import ChibiLabError
from .image.codec import ImagePayload, load_image_file, parse_data_uri
from .image.gemini import create_gemini_backend
from .library.models import Expression
from .logging_utils import RunLogger, configure_logging, create_logger
from .orchestrator import GenerationOutcome
from .session import Session


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="chibi-lab",
        description="Generate a chibi base character and a library of its expressions.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="YAML/JSON config file (default: $CHIBI_LAB_CONFIG or ./config.yaml).",
    )
    parser.add_argument("--log-level", default=None, help="Override logging.level from the config.")
    commands = parser.add_subparsers(dest="command", required=True)

    token = commands.add_parser("token", help="Manage the access token.")
    token_actions = token.add_subparsers(dest="action", required=True)
    token_set = token_actions.add_parser("set", help="Store and validate a token.")
    token_set.add_argument("token")
    token_actions.add_parser("status", help="Show the stored token and its remaining uses.")
    token_actions.add_parser("clear", help="Forget the stored token.")
    token_issue = token_actions.add_parser("issue", help="Operator: write a token with a number of uses.")
    token_issue.add_argument("token")
    token_issue.add_argument("uses", type=int)

    library = commands.add_parser("library", help="Choose and manage the expression library.")
    library_actions = library.add_subparsers(dest="action", required=True)
    library_actions.add_parser("local", help="Keep expressions on this device only.")
    library_use = library_actions.add_parser("use", help="Join a shared library by key.")
    library_use.add_argument("key")
    library_actions.add_parser("create", help="Create a new shared library and join it.")
    library_list = library_actions.add_parser("list", help="List expressions, favourites first.")
    library_list.add_argument("--deleted", action="store_true", help="List archived expressions instead.")
    library_rename = library_actions.add_parser("rename", help="Rename an expression.")
    library_rename.add_argument("id")
    library_rename.add_argument("name")
    library_favorite = library_actions.add_parser("favorite", help="Toggle an expression's favourite flag.")
    library_favorite.add_argument("id")
    library_delete = library_actions.add_parser("delete", help="Delete (archive) one expression.")
    library_delete.add_argument("id")
    library_clear = library_actions.add_parser("clear", help="Delete (archive) every expression.")
    library_clear.add_argument("--yes", action="store_true", help="Confirm clearing the whole library.")
    library_actions.add_parser("leave", help="Leave the shared library and return to local mode.")

    base = commands.add_parser("base", help="Create or manage the base character.")
    base_actions = base.add_subparsers(dest="action", required=True)
    from_image = base_actions.add_parser("from-image", help="Build the base character from an upload.")
    from_image.add_argument("image", type=Path)
    from_image.add_argument("--emotion", default="Neutral")
    from_image.add_argument("--already-chibi", action="store_true", help="Use the upload as-is if it is chibi.")
    _add_generation_options(from_image)
    from_text = base_actions.add_parser("from-text", help="Build the base character from a description.")
    from_text.add_argument("description")
    _add_generation_options(from_text)
    from_expression = base_actions.add_parser("from-expression", help="Promote a library expression.")
    from_expression.add_argument("id")
    show = base_actions.add_parser("show", help="Show the current base character.")
    show.add_argument("--output", type=Path, default=None, help="Write the base image to this file.")
    rename = base_actions.add_parser("rename", help="Rename the base character.")
    rename.add_argument("name")
    base_actions.add_parser("reset", help="Forget the base character.")

    generate = commands.add_parser("generate", help="Generate a new expression of the base character.")
    generate.add_argument("prompt")
    _add_generation_options(generate, naming=False)
    save = generate.add_mutually_exclusive_group()
    save.add_argument("--save", dest="save", action="store_true", default=None)
    save.add_argument("--no-save", dest="save", action="store_false")

    return parser.parse_args(argv)


def _add_generation_options(parser: argparse.ArgumentParser, *, naming: bool = True) -> None:
    parser.add_argument("--reference", type=Path, default=None, help="Optional style reference image.")
    parser.add_argument("--similarity", type=int, default=None, help="Reference similarity, 0-100.")
    parser.add_argument("--output", type=Path, default=None, help="Write the generated image here.")
    if naming:
        parser.add_argument("--name", default=None, help="Base character name (default: derived).")
        parser.add_argument(
            "--preview",
            action="store_true",
            help="Only write the candidate; do not make it the base character.",
        )


def _needs_backend(args: argparse.Namespace) -> bool:
    return args.command == "generate" or (
        args.command == "base" and args.action in {"from-image", "from-text"}
    )


def _write_image(image: str, output: Optional[Path]) -> Optional[Path]:
    if output is None:
        return None
    _, data = parse_data_uri(image)
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_bytes(data)
    return output


def _describe(expression: Expression) -> str:
    star = "*" if expression.is_favorite else " "
    return f"{star} {expression.id}  {expression.name}"


def _report(logger: RunLogger, step: str, outcome: GenerationOutcome, output: Optional[Path]) -> None:
    written = _write_image(outcome.image, output)
    logger.log(step, f"name={outcome.name!r}" + (f" written={written}" if written else ""))
    for warning in outcome.warnings:
        logger.log(step, warning, level="WARN")


async def _token(session: Session, args: argparse.Namespace, logger: RunLogger) -> int:
    gate = session.gate
    if args.action == "set":
        ok = await logger.timed("TOKEN", "validated", gate.set_token(args.token))
        if not ok:
            logger.log("TOKEN", gate.error or "token rejected", level="ERROR")
            return 1
        logger.log("TOKEN", f"uses remaining={gate.uses}")
    elif args.action == "status":
        if not gate.token:
            logger.log("TOKEN", gate.error or "no token stored", level="WARN")
            return 1
        if not gate.is_validated:
            logger.log("TOKEN", gate.error or "token not validated", level="WARN")
            return 1
        logger.log("TOKEN", f"token={gate.token} uses remaining={gate.uses}")
    elif args.action == "clear":
        gate.clear()
        logger.log("TOKEN", "token cleared")
    elif args.action == "issue":
        status = await gate.meter.issue(args.token, args.uses)
        logger.log("TOKEN", f"issued {status.token} with {status.uses_remaining} uses")
    return 0


async def _library(session: Session, args: argparse.Namespace, logger: RunLogger) -> int:
    action = args.action
    if action == "local":
        session.use_local()
        logger.log("LIBRARY", "using the local library")
        return 0
    if action == "use":
        session.use_library_key(args.key)
        logger.log("LIBRARY", f"using shared library {session.library.library_key}")
        return 0
    if action == "create":
        store = await session.create_cloud_library()
        logger.log("LIBRARY", f"created shared library {store.library_key}")
        return 0
    if action == "leave":
        session.leave_cloud()
        logger.log("LIBRARY", "left the shared library; now using the local library")
        return 0

    store = session.library
    if action == "list":
        items = await (store.list_deleted() if args.deleted else store.list())
        logger.log("LIBRARY", f"mode={store.mode} count={len(items)}")
        for item in items:
            print(_describe(item))
    elif action == "rename":
        updated = await store.rename(args.id, args.name)
        logger.log("LIBRARY", f"renamed {updated.id} to {updated.name!r}")
    elif action == "favorite":
        updated = await store.toggle_favorite(args.id)
        logger.log("LIBRARY", f"{updated.id} favourite={updated.is_favorite}")
    elif action == "delete":
        outcome = await store.delete(args.id)
        logger.log("LIBRARY", f"deleted {args.id}")
        if outcome is not None and outcome.warning is not None:
            logger.log("LIBRARY", outcome.warning.message, level="WARN")
    elif action == "clear":
        if not args.yes:
            logger.log("LIBRARY", "refusing to clear without --yes", level="ERROR")
            return 1
        outcomes = await store.clear()
        logger.log("LIBRARY", f"cleared library ({len(outcomes)} archived)")
        for outcome in outcomes:
            if outcome.warning is not None:
                logger.log("LIBRARY", outcome.warning.message, level="WARN")
    return 0


async def _base(session: Session, args: argparse.Namespace, logger: RunLogger) -> int:
    action = args.action
    orchestrator = session.orchestrator
    if action in {"from-image", "from-text"}:
        reference = load_image_file(args.reference) if args.reference else None
        similarity = args.similarity if args.similarity is not None else session.config.generation.similarity
        if action == "from-image":
            image = load_image_file(args.image)
            outcome = await logger.timed(
                "BASE",
                "candidate ready",
                orchestrator.create_base_from_image(
                    image,
                    args.emotion,
                    reference=reference,
                    similarity=similarity,
                    already_chibi=args.already_chibi,
                ),
            )
        else:
            outcome = await logger.timed(
                "BASE",
                "candidate ready",
                orchestrator.create_base_from_text(
                    args.description, reference=reference, similarity=similarity
                ),
            )
        _report(logger, "BASE", outcome, args.output)
        if not args.preview:
            base = session.confirm_base(outcome, args.name)
            logger.log("BASE", f"base character set: {base.name!r}")
        return 0
    if action == "from-expression":
        base = await session.promote_to_base(args.id)
        logger.log("BASE", f"base image replaced from expression {args.id} ({base.name!r})")
        return 0
    if action == "show":
        base = session.base_character
        if base is None:
            logger.log("BASE", "no base character yet", level="WARN")
            return 1
        written = _write_image(base.image, args.output)
        logger.log("BASE", f"name={base.name!r}" + (f" written={written}" if written else ""))
        return 0
    if action == "rename":
        base = session.rename_base(args.name)
        logger.log("BASE", f"renamed to {base.name!r}")
        return 0
    if action == "reset":
        session.reset_base()
        logger.log("BASE", "base character cleared")
    return 0


async def _generate(session: Session, args: argparse.Namespace, logger: RunLogger) -> int:
    reference: Optional[ImagePayload] = load_image_file(args.reference) if args.reference else None
    similarity = args.similarity if args.similarity is not None else session.config.generation.similarity
    outcome = await logger.timed(
        "EXPR",
        "expression generated",
        session.orchestrator.generate_expression(
            args.prompt, reference=reference, similarity=similarity, save=args.save
        ),
    )
    _report(logger, "EXPR", outcome, args.output)
    if outcome.saved and outcome.expression is not None:
        logger.log("SAVE", f"saved {outcome.expression.id} to the {session.mode} library")
    return 0


_HANDLERS = {"token": _token, "library": _library, "base": _base, "generate": _generate}


async def run(args: argparse.Namespace, config: AppConfig, logger: RunLogger) -> int:
    backend = None
    if _needs_backend(args):
        backend = create_gemini_backend(
            image_model=config.generation.image_model,
            validation_model=config.generation.validation_model,
        )
    async with Session(config, backend) as session:
        return await _HANDLERS[args.command](session, args, logger)


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    config = resolve_config(args.config)
    level = args.log_level or config.logging.level
    configure_logging(level)
    logger = create_logger(level, config.logging.logfile)
    try:
        logger.log("BOOT", f"config={config.path or '<defaults>'} db={config.storage.database}", level="DEBUG")
        return asyncio.run(run(args, config, logger))
    except ChibiLabError as exc:
        logger.log(args.command, exc.message, level="ERROR")
        return 1
    finally:
        logger.close()


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
