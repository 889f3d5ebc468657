import asyncio
import threading

from engine.scene import ManualSceneHost, SceneState, StandaloneSceneHost


def test_manual_host_reports_changes_once() -> None:
    host = ManualSceneHost(ready=False)
    seen = []
    unsubscribe = host.on_scene_ready_changed(seen.append)
    host.set_ready(True)
    host.set_ready(True)
    host.set_ready(False)
    unsubscribe()
    unsubscribe()
    host.set_ready(True)
    assert seen == [True, False]
    assert host.subscriber_count == 0
    assert asyncio.run(host.is_scene_ready()) is True


def test_callback_may_unsubscribe_itself_during_notification() -> None:
    host = ManualSceneHost()
    seen = []
    handles = {}

    def once(ready: bool) -> None:
        seen.append(ready)
        handles["once"]()

    handles["once"] = host.on_scene_ready_changed(once)
    host.on_scene_ready_changed(seen.append)
    host.set_ready(True)
    host.set_ready(False)
    assert seen == [True, True, False]
    assert host.subscriber_count == 1


def test_subscriptions_from_other_threads_while_toggling() -> None:
    host = ManualSceneHost()
    errors = []
    stop = threading.Event()

    def churn() -> None:
        try:
            while not stop.is_set():
                unsubscribe = host.on_scene_ready_changed(lambda _ready: None)
                unsubscribe()
        except Exception as e:
            errors.append(e)

    workers = [threading.Thread(target=churn) for _ in range(4)]
    for w in workers:
        w.start()
    try:
        for i in range(2000):
            host.set_ready(i % 2 == 0)
    finally:
        stop.set()
        for w in workers:
            w.join(timeout=5)

    assert errors == []
    assert host.subscriber_count == 0


def test_standalone_host_is_never_ready() -> None:
    host = StandaloneSceneHost()
    assert asyncio.run(host.is_scene_ready()) is False
    host.on_scene_ready_changed(lambda _ready: None)()
    assert SceneState.from_ready(None) is SceneState.UNKNOWN
    assert SceneState.from_ready(False) is SceneState.INACTIVE
