"""Find the serial port the meter's optical probe is plugged into."""

import logging
import time

import serial
import serial.tools.list_ports

logger = logging.getLogger(__name__)

# USB-UART bridges found in optical probe heads
PROBE_VID_PID = [
    ('0403', '6001'),  # FT232
    ('0403', '6015'),  # FT230X
    ('1a86', '7523'),  # CH340
    ('10c4', 'ea60'),  # CP210x
    ('067b', '2303'),  # PL2303
]


def list_ports():
    """Return a description dict for every serial port."""
    ports = []
    for port in serial.tools.list_ports.comports():
        vid = f"{port.vid:04x}" if port.vid is not None else None
        pid = f"{port.pid:04x}" if port.pid is not None else None
        ports.append({
            'device': port.device,
            'description': port.description,
            'vid': vid,
            'pid': pid,
        })
    return ports


def is_probe(port_info):
    return (port_info['vid'], port_info['pid']) in PROBE_VID_PID


def send_command(ser, cmd, wait=0.5):
    """Send one command and return whatever the device answered within ``wait`` seconds."""
    ser.reset_input_buffer()
    ser.write((cmd + '\r').encode('ascii'))
    time.sleep(wait)
    response = b''
    while ser.in_waiting > 0:
        response += ser.read(ser.in_waiting)
    return response.decode('ascii', errors='ignore').strip()


def probe_port(device, baud, vendor, wait=1.0):
    """Ask ``device`` for its identification; True if it is a meter of ``vendor``."""
    try:
        with serial.Serial(device, baud, timeout=0.5) as ser:
            time.sleep(0.5)
            response = send_command(ser, '*IDN?', wait)
    except serial.SerialException as e:
        logger.debug("cannot probe %s: %s", device, e)
        return False
    return any(line.strip().startswith(vendor + ',') for line in response.split('\r'))


def find_meter_port(baud, vendor):
    """
    Return the device of the first port that looks like a meter probe.

    Known probe bridges are tried first; if none of them answers, every port
    is probed with ``*IDN?``.
    """
    ports = list_ports()
    candidates = [p for p in ports if is_probe(p)]
    candidates += [p for p in ports if not is_probe(p)]
    for port_info in candidates:
        logger.info("probing %s (%s)", port_info['device'], port_info['description'])
        if probe_port(port_info['device'], baud, vendor):
            return port_info['device']
    return None
