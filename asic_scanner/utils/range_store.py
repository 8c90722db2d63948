import json, logging, os, tempfile, threading

from asic_scanner.services.address_range import format_range, parse_range_text

logger = logging.getLogger(__name__)

DEFAULT_STATE = {
    "saved_ranges": [],                  # [{"name": ..., "range": "10.0.81.1-254"}]
    "detail_refresh_interval_secs": 10,  # poller interval for newly attached devices
}


class RangeStore:
    """Saved scan ranges and UI preferences in a small JSON file."""

    def __init__(self, path="scanner_config.json"):
        self.path = path
        self._lock = threading.Lock()

    def load(self):
        try:
            with open(self.path, "r") as f:
                data = json.load(f)
        except FileNotFoundError:
            return json.loads(json.dumps(DEFAULT_STATE))
        except (OSError, ValueError) as e:
            logger.warning("Could not read %s, using defaults: %s", self.path, e)
            return json.loads(json.dumps(DEFAULT_STATE))

        # older files hold just the list of ranges
        if isinstance(data, list):
            data = {"saved_ranges": data}
        merged = json.loads(json.dumps(DEFAULT_STATE))
        merged.update(data or {})
        return merged

    def save(self, **kwargs):
        with self._lock:
            state = self.load()
            state.update(kwargs)
            self._atomic_write(state)
            return state

    def ranges(self):
        return list(self.load()["saved_ranges"])

    def address_ranges(self):
        """Parsed saved ranges; unparseable entries are skipped with a warning."""
        parsed = []
        for entry in self.ranges():
            try:
                parsed.append(parse_range_text(entry.get("range", "")))
            except ValueError as e:
                logger.warning("Skipping saved range %r: %s", entry.get("name"), e)
        return parsed

    def add_range(self, name, range_text):
        """Validate and save a range, replacing any with the same name."""
        normalized = format_range(parse_range_text(range_text))
        with self._lock:
            state = self.load()
            ranges = [r for r in state["saved_ranges"] if r.get("name") != name]
            ranges.append({"name": name, "range": normalized})
            state["saved_ranges"] = ranges
            self._atomic_write(state)
        return {"name": name, "range": normalized}

    def remove_range(self, name):
        with self._lock:
            state = self.load()
            ranges = [r for r in state["saved_ranges"] if r.get("name") != name]
            removed = len(ranges) != len(state["saved_ranges"])
            if removed:
                state["saved_ranges"] = ranges
                self._atomic_write(state)
            return removed

    def _atomic_write(self, state):
        d = os.path.dirname(os.path.abspath(self.path)) or "."
        os.makedirs(d, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=".scanner.", dir=d)
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(state, f, indent=2, sort_keys=True)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self.path)  # atomic on POSIX
        finally:
            if os.path.exists(tmp):
                os.remove(tmp)
