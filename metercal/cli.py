"""
Command line entry point.

Builds the run configuration, opens the serial link and runs the calibration
pipeline. Exit codes: 0 success, 1 run failure, 2 configuration error,
130 interrupted by the operator.
"""

from __future__ import annotations

import argparse
import logging

import serial

from metercal import __version__
from metercal.config import RunConfig, parse_read_line, parse_topology
from metercal.controller import Controller, OperationHarness
from metercal.errors import CalibrationError, ConfigurationError
from metercal.link import MeterLink
from metercal.loads import build_load
from metercal.operations import ConnectMeter
from metercal.plotting import plot_phase_samples
from metercal.ports import find_meter_port, list_ports
from metercal.reference import DEFAULT_PORT, ReferenceClient
from metercal.router import Router
from metercal.stabilization import StabilizationSettings

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG = 2
EXIT_INTERRUPTED = 130


def build_parser():
    p = argparse.ArgumentParser(
        prog="metercal",
        description="Calibrate a line-protocol electricity meter, optionally against a reference service",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    p.add_argument("-d", "--device", help="serial device of the meter probe, or 'auto' to search for it")
    p.add_argument("-b", "--baud", type=int, default=9600, help="baud rate")
    p.add_argument("-t", "--topology", default="three", help="phase topology: single, three or split-element")
    p.add_argument("--ref-host", help="reference service host; omit to enter readings by hand")
    p.add_argument("--ref-port", type=int, default=DEFAULT_PORT, help="reference service port")
    p.add_argument("-l", "--load", action="append", default=[], metavar="LINE:V,I[,VA[,IA]]",
                   help="calibration load of one line (mV, mA, degrees); repeat per line")
    p.add_argument("-f", "--frequency", type=float, default=50.0, help="network frequency in Hz")
    p.add_argument("--read-line", action="append", default=[], metavar="PHASE:LINE",
                   help="reference line sensed while calibrating PHASE; repeat per phase")
    p.add_argument("-y", "--yes", action="store_true", help="unattended: skip the 'ready?' prompts")
    p.add_argument("--accuracy-only", action="store_true", help="skip calibration, run the accuracy test only")
    p.add_argument("--ping", action="store_true", help="check the meter answers before starting")
    p.add_argument("--time-scale", type=float, default=1.0, help="multiplier applied to every timeout")
    p.add_argument("--window", type=int, default=5, help="stabilization window in samples")
    p.add_argument("--threshold", type=float, default=0.005, help="stabilization threshold (relative)")
    p.add_argument("--floor", type=float, default=1e6, help="stabilization magnitude floor (uW / uvar)")
    p.add_argument("--plot-dir", help="save reference sample plots to this directory")
    p.add_argument("--list-ports", action="store_true", help="list serial ports and exit")
    p.add_argument("-v", "--verbose", action="store_true", help="log meter traffic and retries")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return p


def build_config(args):
    """Turn parsed arguments into a :class:`RunConfig`; raises ConfigurationError."""
    if not args.device:
        raise ConfigurationError("a serial device is required (-d DEVICE or -d auto)")
    return RunConfig(
        topology=parse_topology(args.topology),
        use_reference=bool(args.ref_host),
        auto_answer=args.yes,
        skip_calibration=args.accuracy_only,
        time_scale=args.time_scale,
        calibration_load=build_load(args.load, args.frequency),
        frequency=args.frequency,
        read_lines=dict(parse_read_line(text) for text in args.read_line),
        stabilization=StabilizationSettings(args.window, args.threshold, args.floor),
    )


def run_calibration(link, config, reference=None, ping=False):
    """
    Run the whole pipeline over an open link and return the finished router.

    Raises:
        CalibrationError: the presence ping failed.
    """
    ctrl = Controller(config, link=link, reference=reference)
    link.start_reader(ctrl.deliver_line, ctrl.abort)
    if ping:
        print("Checking the meter answers...")
        harness = ctrl.run(OperationHarness(ConnectMeter(ctrl, config.vendor)))
        if harness.error is not None:
            raise harness.error
    return ctrl.run(Router(ctrl, config, connect_verified=ping))


def print_ports():
    ports = list_ports()
    if not ports:
        print("No serial ports found.")
    for info in ports:
        ids = f"{info['vid']}:{info['pid']}" if info['vid'] else "-"
        print(f"{info['device']:<20} {ids:<10} {info['description']}")


def print_summary(router):
    if router.readings:
        print("\n+-------+----------+----------+--------------+--------------+")
        print("| Phase |  V (mV)  |  I (mA)  |    P (uW)    |   Q (uvar)   |")
        print("+-------+----------+----------+--------------+--------------+")
        for phase, r in sorted(router.readings.items()):
            print("| L{:<4} | {:>8} | {:>8} | {:>12} | {:>12} |".format(
                phase, r.voltage, r.current, r.active_power, r.reactive_power))
        print("+-------+----------+----------+--------------+--------------+")
    if router.accuracy_results:
        print(f"\nAccuracy test: {len(router.accuracy_results)} results")
        for result in router.accuracy_results:
            print(f"  {result}")
    print("\nCalibration sequence completed.")


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if args.list_ports:
        print_ports()
        return EXIT_OK

    try:
        config = build_config(args)
    except ConfigurationError as e:
        print(f"Configuration error: {e}")
        return EXIT_CONFIG

    reference = ReferenceClient(args.ref_host, args.ref_port) if args.ref_host else None
    device = args.device
    if device == "auto":
        device = find_meter_port(args.baud, config.vendor)
        if device is None:
            print("No meter found on any serial port.")
            return EXIT_FAILURE
        print(f"Using port {device}")

    try:
        with MeterLink(device, args.baud) as link:
            router = run_calibration(link, config, reference, ping=args.ping)
    except serial.SerialException as e:
        print(f"Cannot access {device}: {e}")
        return EXIT_FAILURE
    except CalibrationError as e:
        print(f"Calibration failed: {e}")
        return EXIT_FAILURE
    except KeyboardInterrupt:
        print("\nCalibration interrupted by operator.")
        return EXIT_INTERRUPTED

    if not router.succeeded:
        print(f"Calibration failed: {router.error}")
        return EXIT_FAILURE

    print_summary(router)
    if args.plot_dir:
        for phase, samples in sorted(router.samples.items()):
            path = plot_phase_samples(phase, samples, args.plot_dir)
            print(f"Saved {path}")
    return EXIT_OK
