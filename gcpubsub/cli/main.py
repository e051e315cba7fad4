import asyncio
import json
from typing import Annotated, Any

import anyio
import rich
import typer

from gcpubsub.__about__ import __version__
from gcpubsub.cli.utils import LogLevels, ensure_pubsub_credentials, get_log_level, parse_attributes
from gcpubsub.datastructures import Message, PublishOptions
from gcpubsub.exceptions import GCPubSubCLIException, GCPubSubException
from gcpubsub.logger import setup_logger
from gcpubsub.service import PubSubService, PubSubSettings

app = typer.Typer(
    name="gcpubsub",
    help="A CLI to publish and listen to Google Cloud Pub/Sub topics.",
    pretty_exceptions_short=True,
    invoke_without_command=True,
    rich_markup_mode="markdown",
)

ProjectOption = Annotated[
    str | None,
    typer.Option(
        "--project",
        "-p",
        help="The GCP project id. Defaults to GCPUBSUB_PROJECT_ID or GOOGLE_CLOUD_PROJECT.",
    ),
]
LogLevelOption = Annotated[
    LogLevels,
    typer.Option("--log-level", case_sensitive=False, help="The log level of the CLI."),
]


@app.callback()
def main(
    ctx: typer.Context,
    version: Annotated[
        bool, typer.Option("--version", "-v", help="Show the version and exit.")
    ] = False,
) -> None:
    """
    Display helpful tips when the main command is run without any subcommands.
    """
    if version:
        import platform

        typer.echo(
            f"Running GCPubSub {__version__} with {platform.python_implementation()} "
            f"{platform.python_version()} on {platform.system()}",
        )
        raise typer.Exit

    if ctx.invoked_subcommand is None:
        rich.print("\n[bold]Welcome to the GCPubSub CLI![/bold]")
        rich.print("\n[bold]Usage[/bold]: [cyan]gcpubsub [COMMAND] [ARGS]...[/cyan]")
        rich.print("\n[bold]Common Commands:[/bold]")
        rich.print("  [green]publish[/green]    Publish a message on a topic.")
        rich.print("  [green]subscribe[/green]  Print the messages of a subscription.")
        rich.print(
            "\nRun '[cyan]gcpubsub --help[/cyan]' for "
            "a list of all available commands and options."
        )


@app.command()
def publish(
    topic: Annotated[str, typer.Argument(help="The topic name. It is created when missing.")],
    data: Annotated[str, typer.Argument(help="The message. Sent as JSON unless --raw is set.")],
    project: ProjectOption = None,
    attribute: Annotated[
        list[str] | None,
        typer.Option("--attribute", "-a", help="A message attribute as key=value."),
    ] = None,
    raw: Annotated[bool, typer.Option("--raw", help="Send the data as plain text.")] = False,
    log_level: LogLevelOption = LogLevels.warning,
) -> None:
    """
    Publish a message on a topic and print its id.
    """
    try:
        setup_logger(level=get_log_level(log_level))
        ensure_pubsub_credentials()
        attributes = parse_attributes(attribute)
        settings = PubSubSettings.from_env(project)
        value: Any = data if raw else _parse_json(data)
        message_id = asyncio.run(_publish(settings, topic, value, attributes, raw))
    except GCPubSubException as e:
        rich.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(code=1) from e

    rich.print(f"Published message [green]{message_id}[/green] on [cyan]{topic}[/cyan]")


@app.command()
def subscribe(
    topic: Annotated[str, typer.Argument(help="The topic name. It is created when missing.")],
    subscription: Annotated[
        str, typer.Argument(help="The subscription name. It is created when missing.")
    ],
    project: ProjectOption = None,
    delete_on_exit: Annotated[
        bool,
        typer.Option(
            "--delete-on-exit",
            help="Delete the subscription on exit. Only when no other process uses it.",
        ),
    ] = False,
    log_level: LogLevelOption = LogLevels.info,
) -> None:
    """
    Print the JSON messages received on a subscription until interrupted.
    """
    try:
        setup_logger(level=get_log_level(log_level))
        ensure_pubsub_credentials()
        settings = PubSubSettings.from_env(project)
        asyncio.run(_subscribe(settings, topic, subscription, delete_on_exit))
    except KeyboardInterrupt:
        rich.print("\n[dim]Subscriber stopped by user[/dim]")
    except GCPubSubException as e:
        rich.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(code=1) from e


@app.command(name="help")
def show_help(ctx: typer.Context) -> None:
    """
    Show this message and exit.
    """
    if ctx.parent:
        rich.print(ctx.parent.get_help())


def _parse_json(data: str) -> Any:
    try:
        return json.loads(data)
    except ValueError as e:
        raise GCPubSubCLIException(
            f"The data is not a valid JSON document: {e}. Use --raw to send plain text."
        ) from e


async def _publish(
    settings: PubSubSettings, topic: str, value: Any, attributes: dict[str, str], raw: bool
) -> str:
    service = PubSubService(settings)
    try:
        publisher = await service.create_publisher(topic)
        if raw:
            return await publisher.publish(value.encode("utf-8"), attributes=attributes)
        return await publisher.publish_structured(value, PublishOptions(attributes=attributes))
    finally:
        await service.close()


async def _subscribe(
    settings: PubSubSettings, topic: str, subscription: str, delete_on_exit: bool
) -> None:
    service = PubSubService(settings)
    subscriber = await service.create_subscriber(topic, subscription)

    async def print_message(value: Any, message: Message) -> None:
        rich.print(f"[green]{message.id}[/green]: {json.dumps(value)}")

    await subscriber.listen_structured(print_message)
    rich.print(f"Listening for messages from [cyan]{subscription}[/cyan]. CTRL-C to exit")
    try:
        while True:
            await anyio.sleep(1)
    finally:
        if delete_on_exit:
            await subscriber.delete()
        else:
            await subscriber.close()
        await service.close()


def execute_app() -> None:
    app()


if __name__ == "__main__":
    execute_app()
