import threading

from conftest import FakePortInfo, FakeSerialPort, wait_for
from esp32_flasher.core.port_selection import ExplicitPortSelector
from esp32_flasher.core.serial_session import SerialSession, SessionStatus


def make_session(ports=None, opened=None, fail_open=False, **kwargs):
    ports = ["/dev/ttyS0", "/dev/ttyUSB0"] if ports is None else ports
    opened = [] if opened is None else opened

    def factory(name, baud_rate):
        if fail_open:
            raise OSError("permission denied")
        port = FakeSerialPort(name, baud_rate)
        opened.append(port)
        return port

    session = SerialSession(
        enumerate_ports=lambda: [FakePortInfo(p) for p in ports],
        serial_factory=factory,
        **kwargs,
    )
    lines = []
    session.set_output_listener(lines.append)
    return session, lines, opened


def test_connect_opens_last_enumerated_port():
    session, lines, opened = make_session()

    assert session.connect()
    try:
        assert session.status == SessionStatus.CONNECTED
        assert session.state.active_port == "/dev/ttyUSB0"
        assert opened[0].baudrate == 115200
        assert "Available ports: /dev/ttyS0, /dev/ttyUSB0" in lines
        assert "Connected to /dev/ttyUSB0 at 115200" in lines
    finally:
        session.disconnect()


def test_connect_with_explicit_selector():
    session, lines, opened = make_session(selector=ExplicitPortSelector("/dev/ttyS0"))

    assert session.connect()
    assert opened[0].port == "/dev/ttyS0"
    session.disconnect()


def test_connect_without_ports_stays_disconnected():
    session, lines, _ = make_session(ports=[])

    assert not session.connect()
    assert session.status == SessionStatus.DISCONNECTED
    assert session.state.active_port is None
    assert lines == ["No serial ports found"]


def test_connect_open_failure_is_reported():
    session, lines, _ = make_session(fail_open=True)

    assert not session.connect()
    assert not session.is_connected
    assert any(line.startswith("Failed to open /dev/ttyUSB0") for line in lines)


def test_connect_twice_reports_already_connected():
    session, lines, opened = make_session()

    session.connect()
    assert session.connect()
    assert len(opened) == 1
    assert "Already connected to /dev/ttyUSB0" in lines
    session.disconnect()


def test_disconnect_is_idempotent():
    session, lines, opened = make_session()
    session.connect()

    session.disconnect()
    session.disconnect()

    assert lines.count("Disconnected") == 2
    assert not opened[0].is_open
    assert session.state.active_port is None


def test_send_while_disconnected_never_writes():
    session, lines, opened = make_session()

    assert not session.send_command("AT+RST")

    assert opened == []
    assert lines == ["No port connected"]


def test_send_command_writes_line_and_echoes():
    session, lines, opened = make_session()
    session.connect()

    assert session.send_command("help")

    assert opened[0].written == [b"help\n"]
    assert "Sent: help" in lines
    session.disconnect()


def test_received_bytes_are_forwarded():
    session, lines, opened = make_session()
    session.connect()

    opened[0].feed(b"Bruce v1.11\r\n")

    assert wait_for(lambda: "Bruce v1.11" in lines)
    session.disconnect()


def test_set_baud_rate_applies_live():
    session, lines, opened = make_session()

    assert session.set_baud_rate(9600)
    assert session.baud_rate == 9600
    session.connect()
    assert opened[0].baudrate == 9600

    assert session.set_baud_rate(921600)
    assert opened[0].baudrate == 921600
    assert "Baud rate set to 921600" in lines
    session.disconnect()


def test_invalid_baud_rate_is_rejected():
    session, lines, _ = make_session()

    assert not session.set_baud_rate(0)
    assert session.baud_rate == 115200
    assert lines == ["Invalid baud rate: 0"]


def test_read_error_ends_session():
    opened = []

    def factory(name, baud_rate):
        port = FakeSerialPort(name, baud_rate, read_error=OSError("device unplugged"))
        opened.append(port)
        return port

    session = SerialSession(
        enumerate_ports=lambda: [FakePortInfo("/dev/ttyUSB0")],
        serial_factory=factory,
    )
    lines = []
    session.set_output_listener(lines.append)

    session.connect()

    assert wait_for(lambda: "Read error: device unplugged" in lines)
    assert wait_for(lambda: not session.is_connected)
    assert not opened[0].is_open


def test_reset_toggles_dtr():
    session, lines, opened = make_session()

    assert not session.reset_device()
    session.connect()
    assert session.reset_device()
    assert opened[0].dtr is False
    assert "Device reset" in lines
    session.disconnect()


def test_lines_before_listener_are_not_lost():
    session = SerialSession(enumerate_ports=lambda: [])
    session.connect()

    lines = []
    session.set_output_listener(lines.append)

    assert lines == ["No serial ports found"]


def test_preview_port_does_not_open():
    session, lines, opened = make_session(selector=ExplicitPortSelector("/dev/ttyS0"))

    assert session.preview_port() == "/dev/ttyS0"
    assert opened == []
    assert session.list_ports() == ["/dev/ttyS0", "/dev/ttyUSB0"]


def test_listeners_run_without_holding_the_session_lock():
    session, _, _ = make_session()
    blocked = []

    def listener(line):
        # Hand-off to another thread that reads the state, like a UI thread would
        reader = threading.Thread(target=lambda: session.state)
        reader.start()
        reader.join(1.0)
        if reader.is_alive():
            blocked.append(line)

    session.set_output_listener(listener)

    assert session.connect()
    assert session.connect()
    session.set_baud_rate(9600)
    session.send_command("help")
    session.disconnect()

    assert blocked == []
