"""
Knowledge base chat commands for FunnelCMS CLI
"""

from typing import Tuple

import click

from ..core.models import ChatContext, ContextType
from ..services.chat_service import ChatService


def _parse_contexts(values: Tuple[str, ...]):
    contexts = []
    for value in values:
        if ":" not in value:
            raise click.BadParameter(f"Expected type:id, got '{value}'")
        context_type, context_id = value.split(":", 1)
        contexts.append(ChatContext(type=ContextType(context_type), id=context_id))
    return contexts


@click.group('chat')
def chat_group():
    """Chat with documents, projects and knowledge bases"""
    pass


@chat_group.command('new')
@click.option('--user', 'user_id', required=True, help='User id owning the conversation')
@click.option('--title', help='Conversation title (default: first message)')
@click.option(
    '--context', '-c', 'contexts', multiple=True,
    help='Context as type:id, e.g. knowledge_base:<id> (repeatable)'
)
def new_conversation(user_id: str, title: str, contexts: Tuple[str, ...]):
    """
    Start a conversation

    Examples:
        fcms chat new --user <user-id> -c knowledge_base:<kb-id> -c project:<project-id>
    """
    try:
        conversation = ChatService().create_conversation(user_id, title, _parse_contexts(contexts))
        click.echo(f"💬 Conversation {conversation.id}")
        click.echo(f"   Ask with: fcms chat ask {conversation.id} --user {user_id} \"<question>\"")

    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()


@chat_group.command('ask')
@click.argument('conversation_id')
@click.argument('message')
@click.option('--user', 'user_id', required=True, help='User id owning the conversation')
def ask(conversation_id: str, message: str, user_id: str):
    """Send a message and print the answer with its sources"""
    try:
        reply = ChatService().send_message(conversation_id, user_id, message)

        click.echo(f"\n{reply.content}\n")
        if reply.citations:
            click.echo("📎 Sources:")
            for citation in reply.citations:
                click.echo(f"   - {citation['section']}")

    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()


@chat_group.command('history')
@click.argument('conversation_id')
def history(conversation_id: str):
    """Print a conversation's messages"""
    try:
        for message in ChatService().list_messages(conversation_id):
            who = "🧑" if message.role.value == "user" else "🤖"
            click.echo(f"{who} {message.content}\n")

    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.Abort()
