from app.core import config
from app.services.conversation_store import InMemoryKeyValueStore, JsonFileKeyValueStore

# Create a singleton key-value store shared by every session's conversation,
# wallet and bet list. An empty CHAT_STORE_PATH keeps everything in memory.
kv_store = JsonFileKeyValueStore(config.CHAT_STORE_PATH) if config.CHAT_STORE_PATH else InMemoryKeyValueStore()
