"""src/closer/policy.py"""
import signal
import yaml
import voluptuous as vlp

def default_signals() -> list:
    """The signals closer watches unless told otherwise: SIGINT, SIGHUP (where
    the platform has it) and SIGTERM.
    """
    return [getattr(signal, name) for name in ("SIGINT", "SIGHUP", "SIGTERM") if hasattr(signal, name)]

_UNCATCHABLE_SIGNALS = {getattr(signal, name) for name in ("SIGKILL", "SIGSTOP") if hasattr(signal, name)}

class PolicyError(Exception):
    """Raised when exit policy settings fail validation. `errors` is a list of
    (setting, message) tuples.
    """
    def __init__(self, errors):
        self.errors = errors
        super().__init__("; ".join(f"{setting}: {msg}" for setting, msg in errors))

class PolicySchema:
    """Voluptuous schemas used to validate exit policy settings."""

    class ErrMsg:
        SIGNAL_INVALID = "Not a valid signal name or number"
        EXIT_CODE_INVALID = "Exit code not within range [0, 255]"
        ON_ERROR_INVALID = "Not callable"
        SIGNALS_EMPTY = "At least one signal is required"
        SIGNAL_UNCATCHABLE = "Signal cannot be caught"

    @staticmethod
    def to_signal(s) -> signal.Signals:
        """Validator to coerce a signal number, a signal name such as "SIGTERM",
        or a short name such as "term" into a signal.Signals member. Signals
        that cannot have a handler, such as SIGKILL, are rejected.
        """
        sig = PolicySchema._lookup_signal(s)
        if sig is None or sig not in signal.valid_signals():
            raise vlp.Invalid(PolicySchema.ErrMsg.SIGNAL_INVALID)
        if sig in _UNCATCHABLE_SIGNALS:
            raise vlp.Invalid(PolicySchema.ErrMsg.SIGNAL_UNCATCHABLE)
        return sig

    @staticmethod
    def _lookup_signal(s):
        if isinstance(s, bool):
            return None
        try:
            if isinstance(s, int):
                return signal.Signals(s)
            if isinstance(s, str):
                name = s.strip().upper()
                if not name.startswith("SIG"):
                    name = "SIG" + name
                return signal.Signals[name]
        except (KeyError, ValueError):
            pass
        return None

    @staticmethod
    def is_callable_or_none(f):
        if f is not None and not callable(f):
            raise vlp.Invalid(PolicySchema.ErrMsg.ON_ERROR_INVALID)
        return f

    @staticmethod
    def exit_code() -> vlp.All:
        return vlp.All(int, vlp.Range(min=0, max=255, msg=PolicySchema.ErrMsg.EXIT_CODE_INVALID))

    @staticmethod
    def signals() -> vlp.All:
        return vlp.All(
            [PolicySchema.to_signal],
            vlp.Length(min=1, msg=PolicySchema.ErrMsg.SIGNALS_EMPTY),
        )

    @staticmethod
    def schema() -> vlp.Schema:
        """Schema for settings passed at runtime (see `ExitPolicy.update()`)."""
        return vlp.Schema({
            "exit_with_signal_code": bool,
            "exit_code_ok": PolicySchema.exit_code(),
            "exit_code_err": PolicySchema.exit_code(),
            "on_error": PolicySchema.is_callable_or_none,
            "signals": PolicySchema.signals(),
        })

    @staticmethod
    def file_schema() -> vlp.Schema:
        """Schema for settings read from a YAML file. The error handler can
        only be set from code.
        """
        return vlp.Schema({
            "exit_with_signal_code": bool,
            "exit_code_ok": PolicySchema.exit_code(),
            "exit_code_err": PolicySchema.exit_code(),
            "signals": PolicySchema.signals(),
        })

class ExitPolicy:
    """Process exit settings consulted by the coordinator.

    `exit_with_signal_code`: exit with the number of the caught signal rather
    than `exit_code_err`.
    `exit_code_ok`: exit code used when no action failed.
    `exit_code_err`: exit code used when one or more actions failed.
    `on_error`: optional callable invoked with every action failure.
    `signals`: the signals watched by the coordinator. Changing them after the
    coordinator started listening only takes effect through `set_signals()`.
    """
    def __init__(self, exit_with_signal_code=False, exit_code_ok=0, exit_code_err=1, on_error=None, signals=None):
        self.exit_with_signal_code = exit_with_signal_code
        self.exit_code_ok = exit_code_ok
        self.exit_code_err = exit_code_err
        self.on_error = on_error
        self.signals = signals if signals is not None else default_signals()

    def update(self, **settings):
        """Validate `settings` and apply them. Raises PolicyError listing every
        invalid setting, in which case nothing is applied.
        """
        self.__dict__.update(_validate(PolicySchema.schema(), settings))
        return self

    def exit_code(self, erred) -> int:
        return self.exit_code_err if erred else self.exit_code_ok

    def signal_exit_code(self, sig) -> int:
        if self.exit_with_signal_code and isinstance(sig, int):
            return int(sig)
        return self.exit_code_err

    def __repr__(self):
        return (f"ExitPolicy(exit_with_signal_code={self.exit_with_signal_code}, "
                f"exit_code_ok={self.exit_code_ok}, exit_code_err={self.exit_code_err}, "
                f"signals={[s.name if isinstance(s, signal.Signals) else s for s in self.signals]})")

def _validate(schema, settings) -> dict:
    try:
        return schema(settings)
    except vlp.MultipleInvalid as exc:
        raise PolicyError([(".".join(str(p) for p in err.path), err.msg) for err in exc.errors]) from exc

def validate_signals(signals) -> list:
    """Validate and coerce a sequence of signals as given to `set_signals()`.
    Raises PolicyError if any of them is unknown or cannot be caught."""
    return _validate(PolicySchema.schema(), {"signals": list(signals)})["signals"]

def parse_yaml_settings(string: str) -> dict:
    """Returns the validated settings present in a YAML string. Settings the
    document leaves out are absent from the result.

    Throws `yaml.YAMLError` if the string is malformed and PolicyError if the
    settings are invalid."""
    data = yaml.safe_load(string)
    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise PolicyError([("", "expected a mapping of settings")])
    return _validate(PolicySchema.file_schema(), data)

def parse_settings_file(config_path: str) -> dict:
    """Returns the validated settings present in a YAML config file.

    Throws `OSError` if unable to open `config_path`"""
    with open(config_path, "r", encoding="utf-8") as f:
        return parse_yaml_settings(f)

def parse_yaml_string(string: str) -> ExitPolicy:
    """Returns an ExitPolicy, given a valid YAML string. An empty document
    yields the default policy."""
    return ExitPolicy(**parse_yaml_settings(string))

def parse_file(config_path: str) -> ExitPolicy:
    """Returns an ExitPolicy, given a valid YAML config file.

    Throws `OSError` if unable to open `config_path`"""
    return ExitPolicy(**parse_settings_file(config_path))
