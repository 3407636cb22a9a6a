# Services package
from .fetch_client import CachePolicy, FetchClient, ResponseCache
from .m3u_parser import M3UParser
from .xtream_client import XtreamCodesClient, XtreamCredentials
from .stremio_parser import StremioParser
from .reconciler import reconcile, apply_memberships
from .storage import ChannelStore, KeyValueStore
from .epg_parser import EPGParser
from .server_library import ServerLibraryService, ServerConnectionConfig
from .state_manager import StateManager
