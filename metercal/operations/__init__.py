"""Pipeline operations."""

from metercal.operations.accuracy import PollAccuracy
from metercal.operations.base import Operation, Outcome
from metercal.operations.command import GenericCommand
from metercal.operations.connect import ConnectMeter
from metercal.operations.phase import PhaseCalibrate
from metercal.operations.prompt import OperatorPause
from metercal.operations.service import HttpAction, SetLoad

__all__ = [
    "ConnectMeter",
    "GenericCommand",
    "HttpAction",
    "Operation",
    "OperatorPause",
    "Outcome",
    "PhaseCalibrate",
    "PollAccuracy",
    "SetLoad",
]
