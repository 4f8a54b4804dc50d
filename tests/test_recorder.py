import pytest
from conftest import FakeDevice
from errors import DeviceUnavailable, InvalidStateTransition
from recorder import FAILED, IDLE, PAUSED, RECORDING, STOPPED, Recorder, UploadedAudioDevice


@pytest.fixture
def device():
    return FakeDevice()


@pytest.fixture
def recorder(device, clock):
    return Recorder(device, clock=clock)


def test_full_lifecycle(recorder, device, clock):
    recorder.start()
    assert recorder.state == RECORDING
    recorder.feed(b"abc")
    clock.advance(3)
    recorder.pause()
    assert recorder.state == PAUSED
    assert device.paused
    clock.advance(10)  # paused time does not count
    recorder.resume()
    recorder.feed(b"def")
    clock.advance(2)

    clip = recorder.stop()
    assert recorder.state == STOPPED
    assert clip.data == b"abcdef"
    assert recorder.audio is clip
    assert recorder.elapsed_s == pytest.approx(5)
    assert device.closed == 1


def test_stop_before_start_is_rejected(recorder):
    with pytest.raises(InvalidStateTransition):
        recorder.stop()
    assert recorder.state == IDLE


@pytest.mark.parametrize("action", ["pause", "resume"])
def test_pause_and_resume_require_matching_state(recorder, action):
    with pytest.raises(InvalidStateTransition):
        getattr(recorder, action)()
    recorder.start()
    if action == "resume":
        with pytest.raises(InvalidStateTransition):
            recorder.resume()
    else:
        recorder.pause()
        with pytest.raises(InvalidStateTransition):
            recorder.pause()


def test_feed_only_while_recording(recorder):
    with pytest.raises(InvalidStateTransition):
        recorder.feed(b"x")
    recorder.start()
    recorder.pause()
    with pytest.raises(InvalidStateTransition):
        recorder.feed(b"x")


def test_device_error_moves_to_failed(clock):
    device = FakeDevice(fail_open=True)
    recorder = Recorder(device, clock=clock)
    with pytest.raises(DeviceUnavailable):
        recorder.start()
    assert recorder.state == FAILED
    assert recorder.error
    with pytest.raises(InvalidStateTransition):
        recorder.start()
    recorder.discard()
    assert recorder.state == IDLE
    assert recorder.error is None


def test_empty_capture_fails(recorder, device):
    recorder.start()
    with pytest.raises(DeviceUnavailable):
        recorder.stop()
    assert recorder.state == FAILED
    assert recorder.audio is None
    assert device.closed == 1


@pytest.mark.parametrize("steps", [[], ["start"], ["start", "pause"], ["start", "stop"]])
def test_discard_from_any_state_returns_to_idle(recorder, device, steps):
    for step in steps:
        if step == "stop":
            recorder.feed(b"audio")
        getattr(recorder, step)()
    recorder.discard()
    assert recorder.state == IDLE
    assert recorder.audio is None
    assert recorder.elapsed_s == 0
    assert device.closed == (1 if steps else 0)


def test_start_again_after_stop_drops_previous_take(recorder):
    recorder.start()
    recorder.feed(b"first")
    recorder.stop()
    recorder.start()
    assert recorder.audio is None
    recorder.feed(b"second")
    assert recorder.stop().data == b"second"


def test_uploaded_device_collects_chunks_and_mime_type():
    device = UploadedAudioDevice(max_bytes=10)
    recorder = Recorder(device)
    recorder.start()
    recorder.feed(b"12345", "audio/ogg;codecs=opus")
    recorder.feed(b"678")
    clip = recorder.stop()
    assert clip.data == b"12345678"
    assert clip.mime_type == "audio/ogg"
    assert device.size == 0


def test_uploaded_device_enforces_size_limit():
    recorder = Recorder(UploadedAudioDevice(max_bytes=4))
    recorder.start()
    recorder.feed(b"1234")
    with pytest.raises(DeviceUnavailable):
        recorder.feed(b"5")
    assert recorder.state == RECORDING
    assert recorder.stop().data == b"1234"


def test_hand_off_discards_the_consumed_take(recorder, device):
    recorder.start()
    recorder.feed(b"take")
    clip = recorder.stop()
    assert recorder.hand_off(clip) is True
    assert recorder.state == IDLE
    assert recorder.audio is None


def test_hand_off_keeps_a_newer_take(recorder, device):
    recorder.start()
    recorder.feed(b"old")
    old = recorder.stop()
    recorder.start()
    recorder.feed(b"new")

    assert recorder.hand_off(old) is False
    assert recorder.state == RECORDING
    assert device.closed == 1
    assert recorder.stop().data == b"new"
