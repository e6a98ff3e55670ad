"""
tinyreload – main.py
====================
Orchestrator: runs the file watcher, the broadcast delivery thread and the
HTTP server together.

Usage:  python main.py [ROOT] [--host HOST] [--port PORT]
Open:   http://127.0.0.1:9090
"""

import logging
import sys
import threading
from queue import Queue

from werkzeug.serving import make_server

from broadcast_hub import BroadcastHub
from config import ConfigError, ServerConfig, build_parser, load_config
from file_watcher import ChangeDebouncer, WatcherError, encode_batch, needs_full_reload
from ui_server import create_app

logger = logging.getLogger("tinyreload")

# the debouncer blocks while the broadcaster still holds the previous batch
HANDOFF_QUEUE_SIZE = 1

LOG_FORMAT = "[tinyreload] %(asctime)s %(levelname)s %(name)s: %(message)s"


def deliver(batch, hub: BroadcastHub) -> int:
    """Broadcast one debounced batch of changes."""
    full_reload = needs_full_reload(batch)
    logger.info("Changed: %s (%s)", ", ".join(c.url_path for c in batch),
                "reload" if full_reload else "patch")
    return hub.broadcast(encode_batch(batch), full_reload=full_reload)


def delivery_loop(handoff: Queue, hub: BroadcastHub):
    """Consume debounced batches until a None sentinel arrives."""
    while True:
        batch = handoff.get()
        if batch is None:
            return
        deliver(batch, hub)


def serve(config: ServerConfig):
    hub = BroadcastHub()
    handoff: Queue = Queue(maxsize=HANDOFF_QUEUE_SIZE)

    app = create_app(config.root, hub)
    httpd = make_server(config.host, config.port, app, threaded=True)
    debouncer = ChangeDebouncer(config.root, handoff, window=config.debounce_window)

    threading.Thread(target=httpd.serve_forever, name="http", daemon=True).start()
    threading.Thread(target=delivery_loop, args=(handoff, hub),
                     name="delivery", daemon=True).start()

    try:
        debouncer.start()
        logger.info("Serving %s at http://%s:%d", config.root, config.host, httpd.server_port)
        # blocking; WatcherError propagates and ends the process
        debouncer.run()
    finally:
        debouncer.stop()
        debouncer.join(timeout=2)
        httpd.shutdown()
        hub.reset()


def main(argv=None) -> int:
    try:
        config = load_config(argv)
    except ConfigError as exc:
        build_parser().print_usage(sys.stderr)
        print(f"tinyreload: error: {exc}", file=sys.stderr)
        return 2

    logging.basicConfig(level=config.log_level, format=LOG_FORMAT)

    try:
        serve(config)
    except KeyboardInterrupt:
        logger.info("Shutting down")
    except WatcherError as exc:
        logger.critical("File watcher failed: %s", exc)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
