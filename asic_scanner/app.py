#!/usr/bin/env python3
"""
ASIC Miner Scanner - HTTP application

Service-based architecture with:
- Configuration management
- Adaptive concurrent range sweeps
- Live device registry with bounded history
- Per-device polling and CSV recording
- Start/stop/fault-light control
"""
import io
import logging
import os
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from flask import Flask, Response, jsonify, request, send_from_directory

from asic_scanner.config import Settings, load_settings
from asic_scanner.models.device import Command
from asic_scanner.models.errors import CommandError, InvalidRange, SweepInProgress
from asic_scanner.services.address_range import parse_range, parse_range_text
from asic_scanner.services.auto_scan import AutoScanService
from asic_scanner.services.control import DeviceController
from asic_scanner.services.identifier import DeviceIdentifier
from asic_scanner.services.poller import PollerManager
from asic_scanner.services.recording import RecordingManager, export_devices_csv
from asic_scanner.services.registry import LiveDeviceRegistry
from asic_scanner.services.scanner import ScanCoordinator
from asic_scanner.services.stats import fleet_stats
from asic_scanner.utils.log_buffer import LogBuffer, setup_logging
from asic_scanner.utils.range_store import RangeStore

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything the routes talk to."""
    settings: Settings
    registry: LiveDeviceRegistry
    coordinator: ScanCoordinator
    pollers: PollerManager
    recordings: RecordingManager
    controller: DeviceController
    range_store: RangeStore
    auto_scan: AutoScanService
    log_buffer: LogBuffer

    def shutdown(self):
        self.auto_scan.stop()
        self.coordinator.cancel()
        self.recordings.stop_all()
        self.pollers.stop_all()


def build_services(settings: Settings, identifier=None, log_buffer: Optional[LogBuffer] = None) -> Services:
    identifier = identifier or DeviceIdentifier()
    registry = LiveDeviceRegistry(history_capacity=settings.registry.history_capacity)
    coordinator = ScanCoordinator(identifier, registry, settings)
    pollers = PollerManager(identifier, registry, settings.polling)
    range_store = RangeStore(path=settings.data.ranges_path)
    return Services(
        settings=settings,
        registry=registry,
        coordinator=coordinator,
        pollers=pollers,
        recordings=RecordingManager(settings.data.recordings_dir, registry, pollers, range_store),
        controller=DeviceController(identifier, registry,
                                    refresh_timeout=settings.scan.identification_timeout),
        range_store=range_store,
        auto_scan=AutoScanService(coordinator, range_store, settings.auto_scan.interval),
        log_buffer=log_buffer or LogBuffer(),
    )


def _error(message: str, status: int):
    return jsonify({"ok": False, "error": message}), status


def _parse_command(value) -> Command:
    try:
        return Command(str(value).lower())
    except ValueError:
        raise ValueError(f"Unknown command {value!r}; expected one of "
                         f"{', '.join(c.value for c in Command)}") from None


def create_app(services: Services) -> Flask:
    app = Flask(__name__)
    app.config["services"] = services
    registry = services.registry
    coordinator = services.coordinator

    # --- Scan Routes ---
    @app.post("/api/scan")
    def start_scan():
        """Start a sweep of one range or of every saved range."""
        data = request.get_json(silent=True) or {}
        try:
            if data.get("saved"):
                ranges = services.range_store.address_ranges()
                if not ranges:
                    return _error("No saved ranges to scan", 400)
            elif data.get("range"):
                ranges = [parse_range_text(data["range"])]
            else:
                ranges = [parse_range(data.get("start", ""), data.get("end", ""))]
            options = coordinator.default_options(
                identification_timeout=data.get("identification_timeout"),
                connectivity_retries=data.get("connectivity_retries"),
                port_check_enabled=data.get("port_check"),
            )
            handle = coordinator.start_sweep(ranges, options)
        except InvalidRange as e:
            return _error(str(e), 400)
        except SweepInProgress as e:
            return _error(str(e), 409)
        return jsonify({"ok": True, "progress": handle.progress().to_dict()}), 202

    @app.get("/api/scan/progress")
    def scan_progress():
        handle = coordinator.current()
        if handle is None:
            return jsonify({"state": "idle", "scanning": False})
        return jsonify(handle.progress().to_dict())

    @app.post("/api/scan/cancel")
    def cancel_scan():
        return jsonify({"ok": coordinator.cancel()})

    # --- Device Routes ---
    @app.get("/api/devices")
    def list_devices():
        devices = []
        for record in registry.list():
            data = record.to_dict()
            poller = services.pollers.get(record.identity)
            data["poller"] = poller.status() if poller else None
            devices.append(data)
        return jsonify({"devices": devices, "count": len(devices)})

    @app.get("/api/devices/export")
    def export_devices():
        out = io.StringIO()
        export_devices_csv(registry.list(), out)
        filename = f"miner_export_{datetime.now().strftime('%Y-%m-%d_%H-%M-%S')}.csv"
        return Response(out.getvalue(), mimetype="text/csv",
                        headers={"Content-Disposition": f"attachment; filename={filename}"})

    @app.get("/api/devices/<identity>")
    def get_device(identity):
        record = registry.get(identity)
        if record is None:
            return _error("Unknown device", 404)
        data = record.to_dict()
        poller = services.pollers.get(identity)
        data["poller"] = poller.status() if poller else None
        return jsonify(data)

    @app.get("/api/devices/<identity>/history")
    def device_history(identity):
        if identity not in registry:
            return _error("Unknown device", 404)
        return jsonify({"identity": identity,
                        "history": [p.to_dict() for p in registry.history_of(identity)]})

    @app.post("/api/devices/<identity>/poller")
    def attach_poller(identity):
        data = request.get_json(silent=True) or {}
        interval = data.get("interval", services.range_store.load()["detail_refresh_interval_secs"])
        try:
            poller = services.pollers.attach(identity, float(interval))
        except KeyError:
            return _error("Unknown device", 404)
        except (TypeError, ValueError):
            return _error("interval must be a number", 400)
        services.range_store.save(detail_refresh_interval_secs=poller.interval)
        return jsonify({"ok": True, "poller": poller.status()})

    @app.delete("/api/devices/<identity>/poller")
    def detach_poller(identity):
        return jsonify({"ok": services.pollers.detach(identity)})

    @app.post("/api/devices/<identity>/command")
    def device_command(identity):
        data = request.get_json(silent=True) or {}
        try:
            command = _parse_command(data.get("command"))
            services.controller.send(identity, command)
        except ValueError as e:
            return _error(str(e), 400)
        except KeyError:
            return _error("Unknown device", 404)
        except CommandError as e:
            return _error(str(e), 502)
        return jsonify({"ok": True, "command": command.value})

    @app.post("/api/devices/command")
    def bulk_command():
        data = request.get_json(silent=True) or {}
        try:
            command = _parse_command(data.get("command"))
        except ValueError as e:
            return _error(str(e), 400)
        results = services.controller.send_many(data.get("identities") or [], command)
        return jsonify({"ok": all(r["ok"] for r in results.values()), "results": results})

    @app.post("/api/devices/<identity>/web")
    def open_web(identity):
        try:
            services.controller.open_web_interface(identity)
        except KeyError:
            return _error("Unknown device", 404)
        return jsonify({"ok": True})

    # --- Recording Routes ---
    @app.post("/api/devices/<identity>/recording")
    def start_recording(identity):
        data = request.get_json(silent=True) or {}
        try:
            interval = data.get("interval")
            recorder = services.recordings.start(identity, float(interval) if interval is not None else None)
        except KeyError:
            return _error("Unknown device", 404)
        except ValueError:
            return _error("interval must be a number", 400)
        except OSError as e:
            return _error(f"Could not start recording: {e}", 500)
        return jsonify({"ok": True, "recording": recorder.status()})

    @app.delete("/api/devices/<identity>/recording")
    def stop_recording(identity):
        # ?delete=1 also removes the file
        if request.args.get("delete") in ("1", "true"):
            if not services.recordings.delete(identity):
                return _error("No recording", 404)
            return jsonify({"ok": True, "deleted": True})
        recorder = services.recordings.stop(identity)
        if recorder is None:
            return _error("Not recording", 404)
        return jsonify({"ok": True, "recording": recorder.status()})

    @app.get("/api/recordings")
    def list_recordings():
        return jsonify({"directory": services.recordings.directory,
                        "files": services.recordings.list_files()})

    @app.get("/api/recordings/<name>")
    def download_recording(name):
        if services.recordings.file_path(name) is None:
            return _error("No such recording", 404)
        return send_from_directory(os.path.abspath(services.recordings.directory), name, as_attachment=True)

    # --- Saved Range Routes ---
    @app.get("/api/ranges")
    def list_ranges():
        return jsonify({"ranges": services.range_store.ranges()})

    @app.post("/api/ranges")
    def add_range():
        data = request.get_json(silent=True) or {}
        name = (data.get("name") or "").strip()
        if not name:
            return _error("name is required", 400)
        try:
            saved = services.range_store.add_range(name, data.get("range", ""))
        except InvalidRange as e:
            return _error(str(e), 400)
        return jsonify({"ok": True, "range": saved})

    @app.delete("/api/ranges/<name>")
    def remove_range(name):
        if not services.range_store.remove_range(name):
            return _error("Unknown range", 404)
        return jsonify({"ok": True})

    # --- System Routes ---
    @app.get("/api/stats")
    def stats():
        return jsonify(fleet_stats(registry.list()))

    @app.get("/api/system/status")
    def system_status():
        """Get overall system status."""
        handle = coordinator.current()
        return jsonify({
            "scan": handle.progress().to_dict() if handle else None,
            "device_count": len(registry),
            "pollers": {k: p.status() for k, p in services.pollers.all().items()},
            "auto_scan": services.auto_scan.status(),
        })

    @app.get("/api/system/health")
    def system_health():
        """Health check endpoint."""
        return jsonify({"ok": True, "status": "healthy"})

    @app.get("/api/system/logs")
    def system_logs():
        """Get recent system logs."""
        try:
            count = int(request.args.get('count', 200))
            count = max(1, min(500, count))
        except (ValueError, TypeError):
            count = 200
        return jsonify({"logs": services.log_buffer.get_recent(count)})

    @app.post("/api/system/logs/clear")
    def clear_system_logs():
        """Clear system logs."""
        services.log_buffer.clear()
        return jsonify({"ok": True})

    return app


def main():
    log_buffer = LogBuffer()
    setup_logging(log_buffer, level=logging.DEBUG if os.getenv("SCANNER_DEBUG") else logging.INFO)

    logger.info("Loading configuration...")
    settings = load_settings()
    os.makedirs(settings.data.data_dir, exist_ok=True)

    services = build_services(settings, log_buffer=log_buffer)
    if settings.auto_scan.enabled:
        services.auto_scan.start()

    app = create_app(services)
    logger.info("Starting Flask server on %s:%s", settings.app.host, settings.app.port)
    try:
        app.run(host=settings.app.host, port=settings.app.port, debug=settings.app.debug,
                use_reloader=False, threaded=True)
    finally:
        services.shutdown()


if __name__ == "__main__":
    main()
