from __future__ import annotations

DEFAULT_MANIFEST = "sounds/manifest.json"
DEFAULT_PREFS_PATH = "idle_sounds_prefs.json"


def main(argv: list[str] | None = None) -> int:
    import os
    import sys
    import traceback
    from pathlib import Path

    from PySide6.QtCore import QTimer
    from PySide6.QtWidgets import QApplication

    from engine.audio_service import AudioService, AudioServiceConfig
    from engine.scene import ManualSceneHost
    from engine.tuning import SchedulerConfig, load_engine_tuning
    from gui.engine_adapter import EngineAdapter
    from log.log_manager import LogManager
    from persistence.preferences import Preferences
    from ui.windows.control_window import ControlWindow

    argv = list(sys.argv[1:] if argv is None else argv)
    manifest = argv[0] if argv else os.environ.get("IDLESOUNDS_MANIFEST", DEFAULT_MANIFEST)
    crash_path = Path("last_gui_crash.txt")

    log = LogManager()
    service = None
    try:
        app = QApplication([])

        prefs = Preferences(os.environ.get("IDLESOUNDS_PREFS_PATH", DEFAULT_PREFS_PATH), log=log)
        tuning = load_engine_tuning()
        config = AudioServiceConfig(
            manifest_source=manifest,
            scheduler=prefs.scheduler_config(SchedulerConfig(max_concurrent_voices=tuning.max_concurrent_voices)),
            volume=prefs.volume(),
            extra_url=prefs.shout_url(),
            extra_enabled=prefs.shout_enabled(),
        )
        # Outside a host application the scene is driven from the control window.
        scene_host = ManualSceneHost(ready=False)
        service = AudioService(config, scene_host=scene_host, log=log)

        adapter = EngineAdapter(service, prefs, scene_host=scene_host, log=log)
        w = ControlWindow(adapter, prefs)
        w.show()

        # Start after the window is wired so the first status/playlist events reach it.
        service.start()

        exit_ms_raw = os.environ.get("IDLESOUNDS_SMOKE_EXIT_AFTER_MS", "").strip()
        if exit_ms_raw.isdigit() and int(exit_ms_raw) > 0:
            QTimer.singleShot(int(exit_ms_raw), app.quit)

        rc = app.exec()
        prefs.flush()
        return rc
    except Exception:
        try:
            crash_path.write_text(traceback.format_exc(), encoding="utf-8")
        except OSError:
            pass
        print("\n[GUI CRASH] See last_gui_crash.txt\n", file=sys.stderr)
        traceback.print_exc()
        return 1
    finally:
        if service is not None:
            service.stop()


if __name__ == "__main__":
    raise SystemExit(main())
