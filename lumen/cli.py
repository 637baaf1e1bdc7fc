"""Command-line interface for lumen."""

import functools
import logging
import os
import sys
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import click
import pyperclip
from rich.console import Console
from rich.logging import RichHandler
from rich.markdown import Markdown
from rich.markup import escape

from lumen import __version__
from lumen.core import prompt_engine
from lumen.core.ai_service import AIService
from lumen.core.git_parser import (
    CommitReference,
    GitParser,
    find_project_root,
    pick_commit_with_fzf,
)
from lumen.core.providers import get_provider, supported_providers, validate_api_key
from lumen.errors import LumenError
from lumen.utils.config import (
    DEFAULT_PROVIDER,
    EffectiveConfig,
    GlobalConfig,
    format_config,
    resolve,
)
from lumen.utils.token_resolver import TokenCounter

logger = logging.getLogger(__name__)

console = Console()
err_console = Console(stderr=True)


@dataclass
class Options:
    """Global flags shared by every command."""

    cli_args: Dict[str, Any] = field(default_factory=dict)
    config_path: Optional[str] = None
    debug: bool = False

    def resolve_config(self) -> EffectiveConfig:
        config = resolve(
            self.cli_args,
            explicit_config_path=self.config_path,
            project_root=find_project_root(),
        )
        logger.debug(
            "Effective provider=%s model=%s config_file=%s",
            config.provider,
            config.model,
            config.config_file_path,
        )
        return config


def setup_logging(debug: bool):
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )


def handle_errors(func):
    """Report lumen errors on stderr and exit non-zero."""

    @functools.wraps(func)
    def wrapper(options: Options, *args, **kwargs):
        try:
            return func(options, *args, **kwargs)
        except LumenError as e:
            err_console.print(
                f"[bold red]error:[/bold red] {e.stage}: {escape(str(e))}", soft_wrap=True
            )
            if options.debug:
                raise
            sys.exit(1)
        except (click.exceptions.ClickException, click.exceptions.Exit, click.exceptions.Abort):
            raise
        except KeyboardInterrupt:
            err_console.print("[yellow]Interrupted.[/yellow]")
            sys.exit(130)
        except Exception as e:
            err_console.print(f"[bold red]Unexpected error:[/bold red] {escape(str(e))}")
            if options.debug:
                raise
            sys.exit(1)

    return wrapper


def _fit_diff(ai_service: AIService, diff_text: str, command_kind: str) -> str:
    """Drop trailing file diffs that would overflow the model's context window."""
    counter = TokenCounter(provider=ai_service.provider)
    max_tokens = counter.calculate_max_diff_tokens(ai_service.model_name, command_kind)
    diff_text, original_tokens, final_tokens = counter.truncate_intelligently(
        diff_text, max_tokens
    )
    if original_tokens > max_tokens:
        err_console.print(
            f"[yellow]⚠ Diff truncated:[/yellow] {original_tokens:,} → {final_tokens:,} tokens"
        )
    else:
        logger.debug("Diff size: %s tokens", original_tokens)
    return diff_text


def _generate(ai_service: AIService, prompt: prompt_engine.PromptPair, what: str) -> str:
    with err_console.status(
        f"[bold green]Generating {what} with {ai_service.display_name} "
        f"({escape(ai_service.model_name)})...",
        spinner="dots",
    ):
        return ai_service.generate(prompt)


@click.group()
@click.option(
    "--provider",
    "-p",
    type=click.Choice(supported_providers(), case_sensitive=False),
    help="AI provider to use (overrides config and LUMEN_AI_PROVIDER)",
)
@click.option("--api-key", "-k", help="API key for the provider (overrides config)")
@click.option("--model", "-m", help="Model name (defaults to the provider's default)")
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False),
    help="Path to a config file, instead of the project or global one",
)
@click.option("--debug", is_flag=True, help="Show debug logs and full tracebacks")
@click.version_option(__version__, prog_name="lumen")
@click.pass_context
def cli(ctx, provider, api_key, model, config_path, debug):
    """lumen - AI generated commit messages and explanations for git."""
    debug = debug or os.getenv("LUMEN_DEBUG") == "1"
    setup_logging(debug)
    ctx.obj = Options(
        cli_args={"provider": provider, "model": model, "api_key": api_key},
        config_path=config_path,
        debug=debug,
    )


@cli.command()
@click.option("--context", "-c", help="What the change is about, to guide the message")
@click.option("--copy", "copy_message", is_flag=True, help="Copy the message to the clipboard")
@click.pass_obj
@handle_errors
def draft(options, context, copy_message):
    """Generate a commit message for the staged changes.

    The message is written to stdout, so it can be piped into git:

        lumen draft | git commit -F -
    """
    config = options.resolve_config()
    git_parser = GitParser()
    ai_service = AIService(config)

    diff_text = _fit_diff(
        ai_service, git_parser.get_diff_text(staged=True), prompt_engine.DRAFT
    )
    prompt = prompt_engine.build(
        prompt_engine.DRAFT,
        config.draft,
        prompt_engine.draft_substitutions(diff_text, config.draft.commit_types, context),
    )

    message = _generate(ai_service, prompt, "commit message")
    click.echo(message)

    if copy_message:
        try:
            pyperclip.copy(message)
            err_console.print("[bold green]✓[/bold green] Copied to clipboard!")
        except pyperclip.PyperclipException:
            err_console.print("[yellow]Could not copy to clipboard[/yellow]")


def _explain(options: Options, reference: Optional[str], use_diff: bool, staged: bool, query):
    config = options.resolve_config()
    git_parser = GitParser()
    ai_service = AIService(config)

    if use_diff:
        diff_text = git_parser.get_diff_text(staged=staged)
        entity, details = "changes", ""
        header = f"# Working tree diff{' (staged)' if staged else ''}"
    else:
        try:
            ref = CommitReference.parse(reference)
        except ValueError as e:
            raise click.BadParameter(str(e), param_hint="REFERENCE")

        if ref.is_range:
            diff_text = git_parser.get_range_diff(ref.from_ref, ref.to_ref, ref.triple_dot)
            commits = git_parser.get_log_range(ref.from_ref, ref.to_ref)
            entity = "changes"
            details = "Commits:\n" + "\n".join(
                f"- {sha[:7]} {subject}" for sha, subject in commits
            )
            header = f"# Range\n`{ref}`"
        else:
            commit = git_parser.get_commit(ref.from_ref)
            diff_text = commit.diff
            entity = "commit"
            details = f"Message: {commit.message}"
            header = f"# Commit\n{commit.details()}"

    console.print(Markdown(f"{header}\n\n*Provider: {ai_service.display_name}*"))
    if query:
        console.print(Markdown(f"`query`: {query}"))

    diff_text = _fit_diff(ai_service, diff_text, prompt_engine.EXPLAIN)
    prompt = prompt_engine.build(
        prompt_engine.EXPLAIN,
        config.explain,
        prompt_engine.explain_substitutions(diff_text, entity, details, query),
    )

    result = _generate(ai_service, prompt, "summary")
    console.print(Markdown(result))


@cli.command()
@click.argument("reference", required=False)
@click.option("--diff", "use_diff", is_flag=True, help="Explain the working tree diff")
@click.option("--staged", is_flag=True, help="With --diff, only the staged changes")
@click.option("--query", "-q", help="Ask a specific question about the changes")
@click.pass_obj
@handle_errors
def explain(options, reference, use_diff, staged, query):
    """Explain a commit, a commit range (a..b, a...b) or the working tree diff."""
    if staged and not use_diff:
        raise click.UsageError("--staged can only be used together with --diff")
    if use_diff and reference:
        raise click.UsageError("give either a commit reference or --diff, not both")
    if not use_diff and not reference:
        raise click.UsageError("`explain` expects a commit reference or --diff")

    _explain(options, reference, use_diff, staged, query)


@cli.command("list")
@click.pass_obj
@handle_errors
def list_commits(options):
    """Pick a commit with fzf and explain it."""
    sha = pick_commit_with_fzf()
    _explain(options, sha, use_diff=False, staged=False, query=None)


@cli.command()
@click.argument("query", nargs=-1, required=True)
@click.pass_obj
@handle_errors
def operate(options, query):
    """Ask how to do something with git, e.g. `lumen operate squash the last 3 commits`."""
    query = " ".join(query)
    config = options.resolve_config()
    ai_service = AIService(config)

    console.print(Markdown(f"`query`: {query}"))
    prompt = prompt_engine.build(
        prompt_engine.OPERATE,
        config.operate,
        prompt_engine.operate_substitutions(query),
    )
    result = _generate(ai_service, prompt, "answer")
    console.print(Markdown(result))


@cli.command()
@click.pass_obj
@handle_errors
def configure(options):
    """Interactively set the default provider, API key and model."""
    cfg = GlobalConfig()
    console.print("\n[bold cyan]Lumen Configuration[/bold cyan]\n")

    provider = click.prompt(
        "Select your default AI provider",
        type=click.Choice(supported_providers()),
        default=cfg.get("provider", DEFAULT_PROVIDER),
    )
    descriptor = get_provider(provider)

    api_key = None
    if descriptor.requires_api_key:
        api_key = click.prompt(
            f"Enter your API key (or leave empty to use {descriptor.env_var})",
            default="",
            show_default=False,
            hide_input=True,
        ).strip()
    else:
        console.print(f"[dim]{descriptor.display_name} needs no API key.[/dim]")

    model = click.prompt(
        f"Enter model name (leave empty for default: {descriptor.default_model})",
        default="",
        show_default=False,
    ).strip()

    cfg.set_provider(provider, model or None)
    if api_key:
        cfg.set_api_key(api_key)

    console.print(
        f"\n[bold green]✓[/bold green] Configuration saved to [dim]{cfg.config_file}[/dim]\n"
    )


@cli.group()
def config():
    """Inspect and edit lumen configuration."""
    pass


@config.command("show")
@click.option("--global", "global_only", is_flag=True, help="Show the global config file only")
@click.pass_obj
@handle_errors
def config_show(options, global_only):
    """Show the effective configuration."""
    if global_only:
        cfg = GlobalConfig()
        console.print(f"\n[bold]Global configuration[/bold] ({cfg.config_file}):\n")
        console.print(escape(cfg.show()))
        return

    effective = options.resolve_config()
    console.print("\n[bold]Effective configuration:[/bold]\n")
    console.print(escape(format_config(effective.to_dict())))


@config.command("set-key")
@click.argument("api_key")
@click.pass_obj
@handle_errors
def config_set_key(options, api_key):
    """Store an API key in the global config file."""
    cfg = GlobalConfig()
    provider = cfg.get("provider", DEFAULT_PROVIDER)

    known = provider in supported_providers()
    if known and get_provider(provider).requires_api_key and not validate_api_key(api_key, provider):
        err_console.print(
            "[bold yellow]Warning:[/bold yellow] API key format looks unusual for "
            f"provider '{provider}'."
        )

    cfg.set_api_key(api_key)
    console.print(f"[bold green]✓[/bold green] API key saved to {cfg.config_file}")


@config.command("set-provider")
@click.argument("provider", type=click.Choice(supported_providers()))
@click.option("--model", help="Default model name to use with this provider")
@click.pass_obj
@handle_errors
def config_set_provider(options, provider, model):
    """Switch the default provider in the global config file."""
    cfg = GlobalConfig()
    cfg.set_provider(provider, model)

    descriptor = get_provider(provider)
    console.print(
        f"[bold green]✓[/bold green] Default provider set to "
        f"{descriptor.display_name} ({provider})."
    )
    if model:
        console.print(f"[green]-[/green] Default model set to '{escape(model)}'.")

    if descriptor.requires_api_key and not cfg.get("api_key"):
        console.print(
            f"[yellow]Reminder:[/yellow] Configure an API key for {descriptor.display_name}:\n"
            "  lumen config set-key YOUR_API_KEY\n"
            f"  or set LUMEN_API_KEY / {descriptor.env_var}"
        )


@config.command("reset")
@click.pass_obj
@handle_errors
def config_reset(options):
    """Reset the global config file."""
    cfg = GlobalConfig()
    cfg.reset()
    console.print("[bold green]✓[/bold green] Configuration reset to defaults!")


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
