class DerivBotsError(Exception):
    pass


class ConfigurationError(DerivBotsError):
    def __init__(self, field, message):
        super().__init__(f"{field}: {message}")
        self.field = field


class UnknownStrategyError(DerivBotsError):
    pass


class MalformedMessage(DerivBotsError):
    pass


class TransportError(DerivBotsError):
    pass


class AuthorizationError(TransportError):
    pass


class InsufficientBalanceError(DerivBotsError):
    def __init__(self, balance, stake):
        super().__init__(f"balance {balance:.2f} is lower than the initial stake {stake:.2f}")
        self.balance = balance
        self.stake = stake


class NotEntitledError(DerivBotsError):
    pass


class AlreadyRunningError(DerivBotsError):
    pass
