from metercal.operations.base import Operation


class OperatorPause(Operation):
    """Wait until the operator has done something by hand and confirmed it."""

    label = "operator pause"

    def __init__(self, ctrl, message, outcome="operator-ready"):
        super().__init__(ctrl)
        self.message = message
        self.outcome = outcome

    def start(self):
        self._ask(self.message, lambda answer: self._succeed(self.outcome, answer=answer))
