"""CLI entry point for the voice assistant."""

import click
import json
import signal
import sys
import threading
from pathlib import Path
import structlog
from typing import Optional

from ..config.settings import settings
from ..core.assistant import AssistantConfig, VoiceAssistant
from ..core.errors import ValidationError, VoiceAssistantError
from ..core.events import ClearConversation, ToggleCapture
from ..providers import registry
from ..state.credential_store import CredentialStore
from ..state.history import ConversationHistory
from ..utils.logging import setup_logging, silence_logging
from .presenter import ConsolePresenter


logger = structlog.get_logger()


HELP_TEXT = (
    "Press Enter to start or stop listening. "
    "Commands: [c] clear  [k] set API key  [s] status  [q] quit"
)


def configure_logging(debug: bool) -> None:
    """Set up logging from the logging settings."""
    setup_logging(
        debug=debug,
        log_file=settings.logging.file_enabled,
        log_level=settings.logging.level,
        log_format=settings.logging.format,
        log_dir=settings.logging.directory,
        file_rotation_mb=settings.logging.file_rotation_mb,
        file_backup_count=settings.logging.file_backup_count,
    )


def validate_provider(ctx, param, value):
    """Validate provider selection."""
    if param.name == "stt_provider":
        valid_providers = registry.list_stt_providers()
        provider_type = "STT"
    elif param.name == "ai_provider":
        valid_providers = registry.list_ai_providers()
        provider_type = "AI"
    elif param.name == "tts_provider":
        valid_providers = registry.list_tts_providers()
        provider_type = "TTS"
    else:
        return value

    if value not in valid_providers:
        raise click.BadParameter(
            f"Invalid {provider_type} provider '{value}'. "
            f"Available options: {', '.join(valid_providers)}"
        )
    return value


def read_commands(assistant: VoiceAssistant) -> None:
    """Translate keyboard input into session commands until quit or EOF."""
    while not assistant.shutdown_event.is_set():
        line = sys.stdin.readline()
        if not line:
            break

        command = line.strip().lower()
        if command == "":
            assistant.post(ToggleCapture())
        elif command == "c":
            if click.confirm("Are you sure you want to clear the conversation?"):
                assistant.post(ClearConversation(halt=True))
        elif command == "k":
            api_key = click.prompt("OpenRouter API key", hide_input=True, default="")
            assistant.save_credential(api_key)
        elif command == "s":
            click.echo(json.dumps(assistant.get_status(), indent=2, default=str))
        elif command == "q":
            break
        else:
            click.echo(HELP_TEXT)

    assistant.request_shutdown()


def display_summary(summary: dict) -> None:
    """Print the metrics summary collected during the run."""
    click.echo("\n📊 Session Summary:")
    click.echo(f"Duration: {summary['session_duration_seconds']:.1f}s")
    click.echo(f"Turns: {summary['completed_turns']}")
    click.echo(f"Errors: {summary['total_errors']}")

    if summary["completed_turns"] > 0:
        click.echo(f"Avg Inference Latency: {summary['inference_latency_ms']['avg']:.0f}ms")
        click.echo(f"P95 Inference Latency: {summary['inference_latency_ms']['p95']:.0f}ms")


@click.command()
@click.option(
    "--stt-provider",
    callback=validate_provider,
    default=lambda: settings.stt_provider,
    help="STT provider to use",
)
@click.option(
    "--ai-provider",
    callback=validate_provider,
    default=lambda: settings.ai_provider,
    help="AI provider to use",
)
@click.option(
    "--tts-provider",
    callback=validate_provider,
    default=lambda: settings.tts_provider,
    help="TTS provider to use",
)
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.option("--mock", is_flag=True, help="Run with mock providers (no audio, no API calls)")
@click.option(
    "--config", type=click.Path(exists=True), help="Path to configuration file"
)
@click.option("--no-metrics", is_flag=True, help="Disable metrics collection")
def start(
    stt_provider: str,
    ai_provider: str,
    tts_provider: str,
    debug: bool,
    mock: bool,
    config: Optional[str],
    no_metrics: bool,
):
    """
    Start an interactive voice conversation.

    Speech is captured with WhisperKit, answered through OpenRouter and
    spoken with ElevenLabs.
    """
    if config:
        settings.config_file = Path(config)
        settings.load_from_file()
        # Environment overrides the config file
        settings.load_from_env()

    issues = settings.validate()
    if issues:
        click.echo(
            click.style(
                f"❌ Configuration issues found: {'; '.join(issues)}", fg="red"
            ),
            err=True,
        )
        sys.exit(1)

    configure_logging(debug)

    assistant_config = AssistantConfig(
        stt_provider=stt_provider,
        ai_provider=ai_provider,
        tts_provider=tts_provider,
        enable_metrics=not no_metrics,
        mock_mode=mock,
    )
    assistant = VoiceAssistant(assistant_config, listener=ConsolePresenter())

    def signal_handler(signum, frame):
        logger.info("Received shutdown signal")
        assistant.request_shutdown()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    click.echo(click.style("🎤 Voice Assistant Starting...", fg="green", bold=True))
    click.echo(f"STT Provider: {stt_provider}")
    click.echo(f"AI Provider: {ai_provider} ({settings.inference.model})")
    click.echo(f"TTS Provider: {tts_provider}")
    if mock:
        click.echo(
            click.style("⚠️  Running in MOCK mode - no API calls will be made", fg="yellow")
        )

    try:
        assistant.start()
        click.echo(f"\n{HELP_TEXT}\n")

        input_thread = threading.Thread(
            target=read_commands, args=(assistant,), daemon=True, name="Input-Reader"
        )
        input_thread.start()

        assistant.run()

    except VoiceAssistantError as e:
        logger.error("Fatal error", error=str(e), exc_info=True)
        click.echo(click.style(f"\n❌ Error: {str(e)}", fg="red"))
    finally:
        assistant.stop()
        if assistant.metrics_collector:
            display_summary(assistant.metrics_collector.get_summary())
        click.echo("\n👋 Goodbye!")


@click.command("set-key")
@click.argument("api_key", required=False)
def set_key(api_key: Optional[str]):
    """Save the OpenRouter API key."""
    if api_key is None:
        api_key = click.prompt("OpenRouter API key", hide_input=True)

    store = CredentialStore(settings.credentials.path)
    try:
        store.set(api_key)
    except ValidationError as e:
        click.echo(click.style(f"❌ {e}", fg="red"), err=True)
        sys.exit(1)
    except OSError as e:
        click.echo(click.style(f"❌ Could not save API key: {e}", fg="red"), err=True)
        sys.exit(1)

    click.echo(click.style(f"✅ API key saved to {store.path}", fg="green"))


@click.command()
@click.argument("text", required=False)
@click.option("--model", "-m", help="Model to use instead of the configured one")
@click.option(
    "--json", "json_output", is_flag=True, help="Output response as JSON with metadata"
)
@click.option("--debug", is_flag=True, help="Enable debug logging")
def ask(text: Optional[str], model: Optional[str], json_output: bool, debug: bool):
    """
    Send one text message to the chat-completion endpoint.

    Examples:
    \b
        voice-assistant ask "What is the capital of France?"
        echo "Tell me a joke" | voice-assistant ask --json
    """
    if json_output and not debug:
        silence_logging()
    else:
        configure_logging(debug)

    if not text:
        text = sys.stdin.read().strip()
        if not text:
            click.echo("Error: No input provided", err=True)
            sys.exit(1)

    credentials = CredentialStore(
        settings.credentials.path, default=settings.env_api_key
    )
    overrides = {"model": model} if model else {}
    provider = registry.get_ai_provider(
        settings.ai_provider, credentials=credentials, **overrides
    )

    history = ConversationHistory()
    history.add_user_message(text)

    try:
        provider.initialize()
        reply = provider.complete(history.snapshot())
    except VoiceAssistantError as e:
        logger.error("Error during AI interaction", error=str(e))
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)
    finally:
        provider.stop()

    history.add_assistant_message(reply)

    if json_output:
        status = provider.get_status()
        click.echo(
            json.dumps(
                {
                    "response": reply,
                    "model": status.get("model"),
                    "latency_ms": status.get("last_latency_ms"),
                    "conversation_history": history.to_payload(),
                },
                indent=2,
            )
        )
    else:
        click.echo(reply)


@click.command()
def providers():
    """List available providers."""
    click.echo("🔌 Available Providers")
    click.echo("-" * 50)

    stt_providers = registry.list_stt_providers()
    click.echo(f"\n🎙️  STT Providers ({len(stt_providers)})")
    for provider in stt_providers:
        click.echo(f"  - {provider}")

    ai_providers = registry.list_ai_providers()
    click.echo(f"\n🤖 AI Providers ({len(ai_providers)})")
    for provider in ai_providers:
        click.echo(f"  - {provider}")

    tts_providers = registry.list_tts_providers()
    click.echo(f"\n🔊 TTS Providers ({len(tts_providers)})")
    for provider in tts_providers:
        click.echo(f"  - {provider}")

    click.echo("\nUse --<type>-provider flag to select a specific provider.")
    click.echo("Example: voice-assistant start --mock")


# Create CLI group
cli = click.Group(help="Voice assistant backed by a chat-completion API.")
cli.add_command(start)
cli.add_command(set_key)
cli.add_command(ask)
cli.add_command(providers)


if __name__ == "__main__":
    cli()
