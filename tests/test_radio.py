"""Tests for the radio transports."""

import pytest
import serial

from packages.datatypes.datatypes import RadioPacket
from packages.radio.config import RadioConfig
from packages.radio.transport import LoopbackRadio, RadioError, SerialLoRaRadio, parse_rcv_line

FRAME = bytes(range(28))
FRAME_HEX = FRAME.hex().upper()


class FakeSerial:
    """Minimal stand-in for serial.Serial."""

    def __init__(self, lines=(), fail_read=False, fail_write=False):
        self.lines = [line.encode() for line in lines]
        self.written = []
        self.fail_read = fail_read
        self.fail_write = fail_write
        self.closed = False

    def readline(self):
        if self.fail_read:
            raise serial.SerialException("device disconnected")
        return self.lines.pop(0) if self.lines else b""

    def write(self, data):
        if self.fail_write:
            raise serial.SerialException("write timeout")
        self.written.append(data)
        return len(data)

    def flush(self):
        pass

    def close(self):
        self.closed = True


def test_parse_rcv_line():
    packet = parse_rcv_line(f"+RCV=7,{len(FRAME_HEX)},{FRAME_HEX},-42,9\r\n")
    assert packet == RadioPacket(payload=FRAME, rssi=-42, snr=9)


@pytest.mark.parametrize("line", ["+OK", "+READY", "", "garbage", "+RCV=1,2"])
def test_parse_ignores_other_lines(line):
    assert parse_rcv_line(line) is None


def test_parse_rejects_length_mismatch():
    with pytest.raises(ValueError):
        parse_rcv_line(f"+RCV=7,10,{FRAME_HEX},-42,9")
    with pytest.raises(ValueError):
        parse_rcv_line("+RCV=7,3,ABC,-42,9")


def test_loopback_round_trip():
    radio = LoopbackRadio(rssi=-50, snr=7)
    radio.send(FRAME)
    assert radio.pending() == 1
    assert radio.receive(timeout=0.1) == RadioPacket(payload=FRAME, rssi=-50, snr=7)


def test_loopback_timeout_is_not_an_error():
    assert LoopbackRadio().receive(timeout=0.01) is None


def test_loopback_closed():
    radio = LoopbackRadio()
    radio.close()
    with pytest.raises(RadioError):
        radio.receive(timeout=0.01)
    with pytest.raises(RadioError):
        radio.send(FRAME)


def test_serial_receive_skips_status_lines():
    fake = FakeSerial(["+OK", "+RCV=7,3,ABC,0,0", f"+RCV=2,{len(FRAME_HEX)},{FRAME_HEX},-80,-3"])
    radio = SerialLoRaRadio(RadioConfig(), serial_conn=fake)

    packet = radio.receive(timeout=1.0)

    assert packet.payload == FRAME
    assert (packet.rssi, packet.snr) == (-80, -3)


def test_serial_receive_timeout():
    radio = SerialLoRaRadio(RadioConfig(), serial_conn=FakeSerial())
    assert radio.receive(timeout=0.0) is None


def test_serial_read_failure_is_radio_error():
    radio = SerialLoRaRadio(RadioConfig(), serial_conn=FakeSerial(fail_read=True))
    with pytest.raises(RadioError):
        radio.receive(timeout=0.1)


def test_serial_send_command():
    fake = FakeSerial()
    radio = SerialLoRaRadio(RadioConfig(destination=0), serial_conn=fake)
    radio.send(FRAME)
    assert fake.written == [f"AT+SEND=0,56,{FRAME_HEX}\r\n".encode("ascii")]


def test_serial_write_failure_is_radio_error():
    radio = SerialLoRaRadio(RadioConfig(), serial_conn=FakeSerial(fail_write=True))
    with pytest.raises(RadioError):
        radio.send(FRAME)


def test_serial_not_open():
    radio = SerialLoRaRadio(RadioConfig())
    with pytest.raises(RadioError):
        radio.receive(timeout=0.1)
    with pytest.raises(RadioError):
        radio.send(FRAME)


def test_serial_close():
    fake = FakeSerial()
    radio = SerialLoRaRadio(RadioConfig(), serial_conn=fake)
    radio.close()
    assert fake.closed
    assert radio.serial_conn is None


class ClosingSerial(FakeSerial):
    """Closes the owning radio from inside a read, as a shutdown on another thread would."""

    def __init__(self):
        super().__init__()
        self.radio = None

    def readline(self):
        self.radio.close()
        return b""


def test_serial_close_during_receive():
    fake = ClosingSerial()
    radio = SerialLoRaRadio(RadioConfig(), serial_conn=fake)
    fake.radio = radio

    with pytest.raises(RadioError, match="radio closed"):
        radio.receive(timeout=5.0)
    assert fake.closed
