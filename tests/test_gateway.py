"""End-to-end gateway tests over a loopback radio with simulated nodes."""

from io import StringIO

import pytest
from rich.console import Console

from Gateway_bring_up import GatewayBringUp
from packages.calibration.state import CalibrationState
from packages.datatypes.datatypes import PositionEstimate, RadioPacket
from packages.mag_gateway.config import GatewayConfig
from packages.mag_gateway.context import GatewayMetrics, PositionSlot
from packages.mag_node.config import NodeConfig
from packages.mag_node.simulation import SimulatedNodeCluster
from packages.radio.transport import LoopbackRadio, RadioError


class FakePublisher:
    def __init__(self):
        self.positions = []

    def connect(self):
        pass

    def disconnect(self):
        pass

    def publish_position(self, x, y):
        self.positions.append((x, y))
        return True


class FailingRadio(LoopbackRadio):
    def receive(self, timeout):
        raise RadioError("modem unplugged")


class FixedSolver:
    """Returns a canned estimate."""

    def __init__(self, estimate):
        self.estimate = estimate
        self.calls = 0

    def solve(self, measured, initial_guess=None):
        self.calls += 1
        return self.estimate


@pytest.fixture
def radio():
    return LoopbackRadio()


@pytest.fixture
def publisher():
    return FakePublisher()


@pytest.fixture
def gateway(radio, publisher):
    config = GatewayConfig(rx_timeout_s=0.01, calib_point_timeout_s=0.01)
    gw = GatewayBringUp(config, radio, publisher=publisher, console=Console(file=StringIO(), width=200))
    gw.engine.start_calibration()
    return gw


@pytest.fixture
def cluster(gateway, radio, master_key):
    return SimulatedNodeCluster(
        gateway.config.sensor_layout,
        radio,
        NodeConfig(node_id=1, master_key=master_key),
        plane_height=gateway.config.magnet_plane_height,
        orientation=gateway.config.dipole_orientation
    )


def drain(gateway, radio):
    frames = []
    while radio.pending():
        frames.append(gateway.receive_once())
    return frames


def feed(gateway, radio, cluster, magnet, rounds):
    for _ in range(rounds):
        cluster.step(magnet)
        drain(gateway, radio)


def calibrate(gateway, radio, cluster):
    feed(gateway, radio, cluster, None, gateway.config.baseline_readings_required)
    assert gateway.engine.valid_baseline_count() == 3
    gateway.operator.handle_line("DONE")

    for x, y in [(300, 700), (700, 300)]:
        gateway.engine.begin_point(x, y)
        feed(gateway, radio, cluster, (x, y), gateway.config.calib_readings_per_point)

    gateway.operator.handle_line("START")


def test_baseline_collection(gateway, radio, cluster):
    feed(gateway, radio, cluster, None, 10)

    assert gateway.engine.valid_baseline_count() == 3
    assert gateway.metrics.frames_accepted == 30
    assert gateway.metrics.frames_per_node == {1: 10, 2: 10, 3: 10}
    for node_id in (1, 2, 3):
        node = gateway.engine.node_state(node_id)
        assert node.have_baseline
        assert list(node.baseline) == [20000, -5000, 42000]


def test_full_session_publishes_position(gateway, radio, cluster, publisher):
    calibrate(gateway, radio, cluster)
    assert gateway.engine.state == CalibrationState.RUNNING
    assert all(p.is_complete() for p in gateway.engine.points())
    assert gateway.position.publishing_enabled

    feed(gateway, radio, cluster, (300, 700), 1)

    position = gateway.position.get()
    assert position is not None
    assert 0 <= position[0] <= 1000
    assert 0 <= position[1] <= 1000

    assert gateway.publish_once()
    assert publisher.positions == [position]


def test_no_estimate_before_tracking(gateway, radio, cluster):
    feed(gateway, radio, cluster, None, 10)
    gateway.operator.handle_line("DONE")
    feed(gateway, radio, cluster, (500, 500), 3)

    assert gateway.position.get() is None
    assert not gateway.publish_once()


def test_tampered_and_replayed_frames_are_dropped(gateway, radio, cluster):
    cluster.step(None)
    packet = radio.receive(timeout=0.1)
    drain(gateway, radio)

    tampered = bytearray(packet.payload)
    tampered[-1] ^= 0x01
    assert gateway.handle_packet(RadioPacket(payload=bytes(tampered))) is None
    assert gateway.metrics.security_drops == {"tag_mismatch": 1}

    assert gateway.handle_packet(packet) is not None
    assert gateway.handle_packet(packet) is None
    assert gateway.metrics.security_drops == {"tag_mismatch": 1, "replay": 1}


def test_malformed_frames_are_protocol_drops(gateway):
    assert gateway.handle_packet(RadioPacket(payload=b"\x01\x02")) is None
    assert gateway.handle_packet(RadioPacket(payload=bytes([9]) + bytes(27))) is None
    assert gateway.metrics.protocol_drops == {"short_frame": 1, "bad_node_id": 1}
    assert gateway.metrics.frames_accepted == 0


def test_radio_timeout_is_counted(gateway):
    assert gateway.receive_once() is None
    assert gateway.metrics.radio_timeouts == 1


def test_radio_error_is_counted(publisher):
    gw = GatewayBringUp(GatewayConfig(), FailingRadio(), publisher=publisher,
                        console=Console(file=StringIO()))
    assert gw.receive_once() is None
    assert gw.metrics.radio_errors == 1


def test_dipole_method_uses_converged_estimates_only(radio, publisher, make_node):
    gw = GatewayBringUp(GatewayConfig(position_method="dipole"), radio, publisher=publisher,
                        console=Console(file=StringIO()))
    states = {1: make_node([0, 0, 500]), 2: make_node([0, 0, 300])}

    gw.context.solver = FixedSolver(PositionEstimate(
        x=412.4, y=87.6, M=5000.0, error=1.0, iterations=2, converged=True
    ))
    fix = gw._solve_dipole(states)
    assert (fix.x, fix.y, fix.method) == (412.4, 87.6, "dipole")

    gw.context.solver = FixedSolver(PositionEstimate(
        x=0.0, y=0.0, M=100.0, error=1e9, iterations=20, converged=False, status="max_iterations"
    ))
    assert gw._solve_dipole(states) is None

    gw.context.solver = FixedSolver(None)
    assert gw._solve_dipole(states) is None


def test_position_slot():
    slot = PositionSlot()
    assert slot.get() is None

    slot.set(10, 20)
    assert slot.get() == (10, 20)
    assert slot.publishable() is None

    slot.enable_publishing()
    assert slot.publishable() == (10, 20)


def test_metrics_counters():
    metrics = GatewayMetrics()
    metrics.count_accepted(2)
    metrics.count_accepted(2)
    metrics.count_security_drop("replay")
    metrics.count_protocol_drop("short_frame")
    metrics.count_protocol_drop("short_frame")

    assert metrics.frames_accepted == 2
    assert metrics.frames_per_node == {2: 2}
    assert metrics.security_drops == {"replay": 1}
    assert metrics.protocol_drops == {"short_frame": 2}


def test_radio_error_after_stop_is_not_counted(publisher):
    gw = GatewayBringUp(GatewayConfig(), FailingRadio(), publisher=publisher,
                        console=Console(file=StringIO()))
    gw.stop()
    assert gw.receive_once() is None
    assert gw.metrics.radio_errors == 0
