"""Services for the AVAS chat relay."""
from .errors import RelayError, ValidationError, ConfigurationError, UpstreamError, NetworkError, ParseError
from .gemini_backend import GeminiBackend, GenerativeBackend, BackendReply
from .relay import RelayService, build_history, filter_history
from .ndjson import NDJSONDecoder, encode_fragment
from .relay_client import RelayClient
from .storage import KeyValueStorage, MemoryStorage, JSONFileStorage, SupabaseStorage
from .conversation_store import ConversationStore
from .chat_session import ChatSession, SessionState, StreamState

__all__ = ['RelayError', 'ValidationError', 'ConfigurationError', 'UpstreamError', 'NetworkError', 'ParseError', 'GeminiBackend', 'GenerativeBackend', 'BackendReply', 'RelayService', 'build_history', 'filter_history', 'NDJSONDecoder', 'encode_fragment', 'RelayClient', 'KeyValueStorage', 'MemoryStorage', 'JSONFileStorage', 'SupabaseStorage', 'ConversationStore', 'ChatSession', 'SessionState', 'StreamState']
