"""
Sandpass

Synchronization and correlation engine for robotic sanding pass runs:
backfills and polls capture records from the remote store, matches videos
to pass steps, and keeps operator notes per pass.

Quick Start:
    from sandpass import DashboardSession, RecordStoreClient, load_or_create_config

    config = load_or_create_config()
    client = RecordStoreClient(config.remote.api_url,
                               config.remote.api_key_id, config.remote.api_key)
    session = DashboardSession(client, config)
    await session.load()
    for sv in session.step_videos(session.passes[0].pass_id):
        print(sv.step.name, len(sv.videos))

CLI Usage:
    sandpass passes
    sandpass videos PASS_ID
    sandpass notes set PASS_ID "grit 120 looked uneven"

Environment Variables:
    SANDPASS_HOME        - Config directory (default ~/.sandpass/)
    SANDPASS_API_KEY_ID  - API key id for the record store
    SANDPASS_API_KEY     - API key secret
    SANDPASS_MACHINE_ID  - Machine whose records are synchronized
    SANDPASS_VERBOSE     - Set to 1 for debug logging in the CLI
"""

from .backfill import BackfillFetcher, BackfillResult
from .config import SandpassConfig, load_config, load_or_create_config
from .correlate import StepVideos, correlate_pass, videos_for_pass, videos_for_step
from .errors import DecodeFailure, InvalidArgument, SandpassError, StoreUnavailable
from .notes import NotesStore, decode_note, encode_note, latest_note, latest_text
from .poller import DeltaPoller
from .protocol import Filter, Order, RecordStoreProtocol, Routing
from .record_set import LoadedRecordSet
from .session import DashboardSession
from .store_client import RecordStoreClient
from .types import Note, Page, Record, RunPass, Step

__all__ = [
    "BackfillFetcher",
    "BackfillResult",
    "DashboardSession",
    "DecodeFailure",
    "DeltaPoller",
    "Filter",
    "InvalidArgument",
    "LoadedRecordSet",
    "Note",
    "NotesStore",
    "Order",
    "Page",
    "Record",
    "RecordStoreClient",
    "RecordStoreProtocol",
    "Routing",
    "RunPass",
    "SandpassConfig",
    "SandpassError",
    "Step",
    "StepVideos",
    "StoreUnavailable",
    "correlate_pass",
    "decode_note",
    "encode_note",
    "latest_note",
    "latest_text",
    "load_config",
    "load_or_create_config",
    "videos_for_pass",
    "videos_for_step",
]
