"""
Terminal chat client for the AVAS relay.

Streams replies as they arrive and keeps conversations in local storage
(or Supabase). Ctrl-C while a reply is streaming cancels it.

Usage:
    python chat_cli.py [--api-url URL] [--model NAME] [--no-stream] [--storage file|supabase]

Commands:
    /new                 start a fresh conversation
    /list                list stored conversations
    /open N              open conversation N from /list
    /rename N TITLE      rename conversation N
    /delete N            delete conversation N
    /export PATH         write the current conversation to a text file
    /models              list models offered by the relay
    /health              show relay health
    /quit                exit
"""
import sys
import argparse
import logging
import threading
from pathlib import Path
from typing import List, Optional

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent))

from config import Settings, configure_logging
from models.conversation import ASSISTANT, Turn
from services.chat_session import ChatSession
from services.conversation_store import ConversationStore
from services.errors import RelayError
from services.relay_client import RelayClient
from services.storage import JSONFileStorage, KeyValueStorage, SupabaseStorage

logger = logging.getLogger(__name__)


class TerminalView:
    """Prints only the part of the streamed reply that is new since the last update."""

    def __init__(self):
        self.printed = 0

    def reset(self) -> None:
        self.printed = 0

    def on_update(self, turns: List[Turn]) -> None:
        if not turns or turns[-1].role != ASSISTANT:
            return
        content = turns[-1].content
        if len(content) > self.printed:
            print(content[self.printed:], end="", flush=True)
            self.printed = len(content)

    def on_status(self, status: str) -> None:
        if status not in ("Ready", "Processing..."):
            print(f"\n[{status}]", flush=True)


def build_storage(settings: Settings, kind: str) -> KeyValueStorage:
    if kind == "supabase":
        return SupabaseStorage(settings.supabase_url, settings.supabase_key, settings.supabase_table)
    return JSONFileStorage(settings.storage_path)


def send_with_cancel(session: ChatSession, text: str) -> None:
    """Run send on a worker thread so Ctrl-C can request cancellation."""
    worker = threading.Thread(target=session.send, args=(text,), daemon=True)
    worker.start()
    while worker.is_alive():
        try:
            worker.join(0.1)
        except KeyboardInterrupt:
            session.cancel()
    print()


def _pick(store: ConversationStore, index: str) -> Optional[str]:
    try:
        return store.conversations[int(index) - 1].id
    except (ValueError, IndexError):
        print(f"No conversation {index!r}")
        return None


def handle_command(line: str, session: ChatSession, client: RelayClient) -> bool:
    """Run one slash command. Returns False when the user asked to quit."""
    store = session.store
    command, _, rest = line[1:].partition(" ")
    rest = rest.strip()

    if command in ("quit", "exit"):
        return False
    if command == "new":
        session.new_chat()
        print("Started a new conversation")
    elif command == "list":
        for i, conversation in enumerate(store.conversations, start=1):
            marker = "*" if conversation.id == store.active_id else " "
            print(f"{marker}{i:3d}. {conversation.title}")
    elif command == "open":
        conversation_id = _pick(store, rest)
        if conversation_id and session.open_chat(conversation_id):
            print(store.export_text())
    elif command == "rename":
        index, _, title = rest.partition(" ")
        conversation_id = _pick(store, index)
        if conversation_id and title.strip():
            store.rename(conversation_id, title.strip())
    elif command == "delete":
        conversation_id = _pick(store, rest)
        if conversation_id:
            store.delete(conversation_id)
            session.turns = list(store.turns)
    elif command == "export":
        path = Path(rest or "avas-chat.txt")
        path.write_text(store.export_text(), encoding="utf-8")
        print(f"Exported to {path}")
    elif command == "models":
        for model in client.list_models():
            print(f"{model['name']}  {model['description']}")
    elif command == "health":
        print(client.health())
    else:
        print(f"Unknown command: /{command}")
    return True


def main(argv: Optional[List[str]] = None) -> int:
    settings = Settings.from_env()

    parser = argparse.ArgumentParser(description="Chat with the AVAS relay from the terminal")
    parser.add_argument("--api-url", default=settings.api_base_url, help="Relay base URL")
    parser.add_argument("--model", default=None, help="Model name (relay default if omitted)")
    parser.add_argument("--no-stream", action="store_true", help="Request complete replies instead of streams")
    parser.add_argument("--storage", choices=["file", "supabase"], default="file", help="Where conversations are kept")
    args = parser.parse_args(argv)

    configure_logging(settings)

    client = RelayClient(args.api_url)
    store = ConversationStore(build_storage(settings, args.storage))
    store.load()

    view = TerminalView()
    session = ChatSession(
        client,
        store,
        model=args.model,
        streamed=not args.no_stream,
        on_update=view.on_update,
        on_status=view.on_status
    )

    print(store.export_text())
    try:
        while True:
            try:
                line = input("\n> ").strip()
            except EOFError:
                break
            if not line:
                continue
            if line.startswith("/"):
                try:
                    if not handle_command(line, session, client):
                        break
                except RelayError as e:
                    print(f"[{e.detail or e.code}]")
                continue
            view.reset()
            send_with_cancel(session, line)
    except KeyboardInterrupt:
        pass
    finally:
        client.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
