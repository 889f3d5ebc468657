import concurrent.futures
import queue

import pytest

pytest.importorskip("PySide6")

from PySide6.QtCore import QCoreApplication  # noqa: E402

from engine.messages.commands import (  # noqa: E402
    ArmCommand,
    SceneStateCommand,
    SetExtraUrlCommand,
    SetIntervalCommand,
    SetModeCommand,
    SetVolumeCommand,
)
from engine.messages.events import (  # noqa: E402
    GateStateEvent,
    LogLineEvent,
    PermissionRequiredEvent,
    PlaylistChangedEvent,
    PreloadReport,
    StatusEvent,
)
from engine.scene import ManualSceneHost  # noqa: E402
from engine.tuning import CadenceMode  # noqa: E402
from gui.engine_adapter import EngineAdapter  # noqa: E402
from log.log_manager import LogManager  # noqa: E402
from persistence.preferences import Preferences  # noqa: E402


class FakeService:
    def __init__(self, *, running: bool = True) -> None:
        self.evt_q = queue.Queue()
        self.commands = []
        self.running = running

    def submit(self, cmd):
        if not self.running:
            raise RuntimeError("audio service is not running")
        self.commands.append(cmd)
        fut = concurrent.futures.Future()
        fut.set_result(None)
        return fut


@pytest.fixture(scope="module")
def qapp():
    return QCoreApplication.instance() or QCoreApplication([])


def _adapter(tmp_path, service=None, **kwargs):
    service = service or FakeService()
    prefs = Preferences(tmp_path / "prefs.json", debounce_seconds=0, log=LogManager(echo=False))
    adapter = EngineAdapter(service, prefs, log=LogManager(echo=False), **kwargs)
    return adapter, service, prefs


def test_ui_slots_send_commands_and_persist_prefs(qapp, tmp_path) -> None:
    adapter, service, prefs = _adapter(tmp_path)
    prefs.set_pref("shout_url", "https://cdn.example/shout.mp3")

    adapter.on_user_arm()
    adapter.on_volume_changed(1.4)
    adapter.on_interval_changed(350)
    adapter.on_mode_changed("Ambient")
    adapter.on_shout_toggle(True)
    adapter.on_scene_toggle(True)
    adapter.stop()

    assert service.commands == [
        ArmCommand(),
        SetVolumeCommand(volume=1.0),
        SetIntervalCommand(interval_ms=350),
        SetModeCommand(mode=CadenceMode.AMBIENT),
        SetExtraUrlCommand(url="https://cdn.example/shout.mp3", enabled=True),
        SceneStateCommand(active=True),
    ]
    assert prefs.volume() == 1.0
    assert prefs.interval_ms() == 350
    assert prefs.mode() is CadenceMode.AMBIENT
    assert prefs.shout_enabled() is True


def test_unknown_mode_is_ignored(qapp, tmp_path) -> None:
    adapter, service, prefs = _adapter(tmp_path)
    adapter.on_mode_changed("frantic")
    adapter.stop()
    assert service.commands == []
    assert prefs.mode() is CadenceMode.CHAOS


def test_scene_toggle_drives_manual_host(qapp, tmp_path) -> None:
    host = ManualSceneHost(ready=False)
    seen = []
    host.on_scene_ready_changed(seen.append)
    adapter, service, _prefs = _adapter(tmp_path, scene_host=host)
    adapter.on_scene_toggle(True)
    adapter.stop()
    assert seen == [True]
    assert service.commands == []


def test_commands_are_dropped_when_service_is_down(qapp, tmp_path) -> None:
    adapter, service, _prefs = _adapter(tmp_path, service=FakeService(running=False))
    adapter.on_user_arm()
    adapter.stop()
    assert service.commands == []


def test_events_become_signals(qapp, tmp_path) -> None:
    adapter, service, _prefs = _adapter(tmp_path)
    statuses, files, lines, permission, gate, preload = [], [], [], [], [], []
    adapter.status_changed.connect(lambda text, color: statuses.append((text, color)))
    adapter.file_list_changed.connect(files.append)
    adapter.log_line.connect(lines.append)
    adapter.permission_required.connect(permission.append)
    adapter.gate_state_changed.connect(gate.append)
    adapter.preload_finished.connect(lambda ok, failed: preload.append((ok, failed)))

    service.evt_q.put(StatusEvent(text="no scene", color="#a7f3d0"))
    service.evt_q.put(PlaylistChangedEvent(urls=("a.mp3", "b.mp3")))
    service.evt_q.put(LogLineEvent(text="[12:00:00] played: a.mp3"))
    service.evt_q.put(PermissionRequiredEvent(reason="device refused"))
    service.evt_q.put(GateStateEvent(state="armed_active", previous="unarmed", scene="inactive"))
    service.evt_q.put(PreloadReport(loaded=("a.mp3",), failed={"b.mp3": "404"}))
    adapter.stop()

    assert statuses == [("no scene", "#a7f3d0")]
    assert files == [["a.mp3", "b.mp3"]]
    assert adapter.urls == ["a.mp3", "b.mp3"]
    assert lines == ["[12:00:00] played: a.mp3"]
    assert permission == ["device refused"]
    assert gate == ["armed_active"] and adapter.gate_state == "armed_active"
    assert preload == [(1, 1)]
    assert service.evt_q.empty()
