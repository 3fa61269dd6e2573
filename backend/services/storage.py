"""Durable key-value storage substrates for client-side state."""
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, Optional, Protocol

from supabase import create_client, Client

logger = logging.getLogger(__name__)


class KeyValueStorage(Protocol):
    """String key to string value storage with no transactional guarantees."""

    def get_item(self, key: str) -> Optional[str]:
        ...

    def set_item(self, key: str, value: str) -> None:
        ...

    def remove_item(self, key: str) -> None:
        ...


class MemoryStorage:
    """Process-local storage, used for tests and throwaway sessions."""

    def __init__(self, items: Optional[Dict[str, str]] = None):
        self.items: Dict[str, str] = dict(items or {})

    def get_item(self, key: str) -> Optional[str]:
        return self.items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self.items[key] = value

    def remove_item(self, key: str) -> None:
        self.items.pop(key, None)


class JSONFileStorage:
    """
    All keys kept in one JSON object on disk.

    Every write rewrites the file through a temporary file and os.replace, so a
    reader never observes a half-written file.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def _read_all(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        data = json.loads(self.path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError(f"Storage file {self.path} does not hold a JSON object")
        return data

    def _read_for_write(self) -> Dict[str, str]:
        """Current contents to merge a write into; an unreadable file is replaced."""
        try:
            return self._read_all()
        except (OSError, ValueError) as e:
            logger.warning(f"Storage file {self.path} is unreadable, overwriting it: {e}")
            return {}

    def _write_all(self, items: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=self.path.name, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as tmp:
                json.dump(items, tmp, ensure_ascii=False)
            os.replace(tmp_name, self.path)
        except BaseException:
            os.unlink(tmp_name)
            raise

    def get_item(self, key: str) -> Optional[str]:
        return self._read_all().get(key)

    def set_item(self, key: str, value: str) -> None:
        items = self._read_for_write()
        items[key] = value
        self._write_all(items)
        logger.debug(f"Wrote {len(value)} chars to {self.path} [{key}]")

    def remove_item(self, key: str) -> None:
        items = self._read_for_write()
        if items.pop(key, None) is not None:
            self._write_all(items)


class SupabaseStorage:
    """Key-value rows in a Supabase table with columns (key text primary key, value text)."""

    def __init__(
        self,
        supabase_url: Optional[str] = None,
        supabase_key: Optional[str] = None,
        table_name: str = "kv_store",
        client: Optional[Client] = None
    ):
        """
        Initialize the storage with a Supabase client.

        Args:
            supabase_url: Supabase project URL
            supabase_key: Supabase API key
            table_name: Name of the key-value table
            client: Existing client to use instead of creating one

        Raises:
            ValueError: If neither a client nor credentials are given
        """
        if client is None:
            if not supabase_url or not supabase_key:
                raise ValueError("SUPABASE_URL and SUPABASE_KEY must be set to use Supabase storage")
            client = create_client(supabase_url, supabase_key)

        self.client = client
        self.table_name = table_name
        logger.info(f"Initialized SupabaseStorage with table: {table_name}")

    def get_item(self, key: str) -> Optional[str]:
        result = self.client.table(self.table_name).select("value").eq("key", key).execute()
        if result.data:
            return result.data[0]["value"]
        return None

    def set_item(self, key: str, value: str) -> None:
        self.client.table(self.table_name).upsert({"key": key, "value": value}).execute()

    def remove_item(self, key: str) -> None:
        self.client.table(self.table_name).delete().eq("key", key).execute()
