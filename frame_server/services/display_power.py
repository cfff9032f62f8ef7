"""Physical display power control.

Power is switched by walking an ordered list of OS mechanisms and stopping at
the first one whose command exits cleanly. The list comes from
``config.DISPLAY_POWER_METHODS`` so the fallback order can be changed per
installation. The last requested power state is persisted as the
``display-state`` document; a failed switch leaves it untouched.
"""

from __future__ import annotations

import os
import shutil
import subprocess
from dataclasses import dataclass, field
from threading import RLock
from typing import Any, Callable, Dict, List, Optional, Sequence

from .. import config
from .documents import DISPLAY_DOCUMENT, DocumentBackend, load_document, save_document

logger = config.logger

CommandRunner = Callable[[Sequence[str], float], subprocess.CompletedProcess]


@dataclass(frozen=True)
class PowerMethod:
    """One way of switching the panel: a binary plus its on/off arguments."""

    name: str
    binary: str
    on_args: tuple
    off_args: tuple
    query_args: Optional[tuple] = None
    needs_display: bool = False

    def command(self, power: bool) -> List[str]:
        return [self.binary, *(self.on_args if power else self.off_args)]

    def query_command(self) -> Optional[List[str]]:
        if self.query_args is None:
            return None
        return [self.binary, *self.query_args]


def _method_factories(output: str) -> Dict[str, PowerMethod]:
    return {
        'vcgencmd': PowerMethod(
            'vcgencmd', 'vcgencmd',
            ('display_power', '1'), ('display_power', '0'),
            query_args=('display_power',)
        ),
        'wlr-randr': PowerMethod(
            'wlr-randr', 'wlr-randr',
            ('--output', output, '--on'), ('--output', output, '--off')
        ),
        'xrandr': PowerMethod(
            'xrandr', 'xrandr',
            ('--output', output, '--auto'), ('--output', output, '--off'),
            needs_display=True
        ),
        'xset': PowerMethod(
            'xset', 'xset',
            ('dpms', 'force', 'on'), ('dpms', 'force', 'off'),
            needs_display=True
        ),
        'tvservice': PowerMethod(
            'tvservice', 'tvservice',
            ('-p',), ('-o',),
            query_args=('-s',)
        ),
    }


def available_method_names() -> List[str]:
    return sorted(_method_factories(config.DISPLAY_OUTPUT))


def build_methods(names: Optional[Sequence[str]] = None, output: Optional[str] = None) -> List[PowerMethod]:
    """Resolve configured method names, skipping the unknown ones."""
    known = _method_factories(output or config.DISPLAY_OUTPUT)
    methods: List[PowerMethod] = []
    for name in names if names is not None else config.display_power_method_names():
        method = known.get(name)
        if method is None:
            logger.warning('[Display] Unknown display power method %s ignored', name)
            continue
        methods.append(method)
    return methods


def _command_env(method: PowerMethod) -> Optional[Dict[str, str]]:
    if not method.needs_display or os.environ.get('DISPLAY'):
        return None
    env = dict(os.environ)
    env['DISPLAY'] = ':0'
    return env


def run_command(method: PowerMethod, command: Sequence[str], timeout: float) -> subprocess.CompletedProcess:
    return subprocess.run(
        list(command),
        capture_output=True,
        text=True,
        timeout=timeout,
        env=_command_env(method),
        check=False
    )


@dataclass
class PowerAttempt:
    method: str
    command: str
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {'method': self.method, 'command': self.command, 'error': self.error}


@dataclass
class PowerResult:
    success: bool
    is_on: bool
    method: Optional[str] = None
    attempts: List[PowerAttempt] = field(default_factory=list)

    @property
    def error(self) -> Optional[str]:
        if self.success:
            return None
        if not self.attempts:
            return 'no display power methods configured'
        last = self.attempts[-1]
        return f'{last.method}: {last.error}'


def _parse_query_output(method: PowerMethod, output: str) -> Optional[bool]:
    text = (output or '').strip().lower()
    if method.name == 'vcgencmd':
        # display_power=1 / display_power=0
        _, _, value = text.partition('=')
        if value.strip() in {'0', '1'}:
            return value.strip() == '1'
        return None
    if method.name == 'tvservice':
        if 'tv is off' in text:
            return False
        if text:
            return True
    return None


class DisplayPowerController:
    """Switches the physical panel and remembers the requested power flag."""

    def __init__(
        self,
        backend: DocumentBackend,
        methods: Optional[Sequence[PowerMethod]] = None,
        runner: Optional[Callable[[PowerMethod, Sequence[str], float], subprocess.CompletedProcess]] = None,
        which: Callable[[str], Optional[str]] = shutil.which
    ):
        self.backend = backend
        self._methods = list(methods) if methods is not None else None
        self._runner = runner or run_command
        self._which = which
        self._lock = RLock()

    @property
    def methods(self) -> List[PowerMethod]:
        if self._methods is not None:
            return self._methods
        return build_methods()

    def is_on(self) -> bool:
        raw = load_document(self.backend, DISPLAY_DOCUMENT, None)
        if isinstance(raw, dict) and isinstance(raw.get('isOn'), bool):
            return raw['isOn']
        return True

    def _attempt(self, method: PowerMethod, command: List[str]) -> PowerAttempt:
        rendered = ' '.join(command)
        if self._which(method.binary) is None:
            return PowerAttempt(method.name, rendered, f'{method.binary} not found on PATH')
        try:
            completed = self._runner(method, command, config.DISPLAY_COMMAND_TIMEOUT)
        except subprocess.TimeoutExpired:
            return PowerAttempt(method.name, rendered, f'timed out after {config.DISPLAY_COMMAND_TIMEOUT}s')
        except OSError as exc:
            return PowerAttempt(method.name, rendered, str(exc))
        if completed.returncode != 0:
            detail = (completed.stderr or completed.stdout or '').strip()
            message = f'exit status {completed.returncode}'
            if detail:
                message = f'{message}: {detail}'
            return PowerAttempt(method.name, rendered, message)
        return PowerAttempt(method.name, rendered)

    def set_power(self, power: bool) -> PowerResult:
        """Try each configured method in order until one switches the panel."""
        with self._lock:
            attempts: List[PowerAttempt] = []
            for method in self.methods:
                attempt = self._attempt(method, method.command(power))
                attempts.append(attempt)
                if attempt.succeeded:
                    logger.info('[Display] Display turned %s via %s', 'on' if power else 'off', method.name)
                    save_document(self.backend, DISPLAY_DOCUMENT, {'isOn': power})
                    return PowerResult(True, power, method.name, attempts)
                logger.warning('[Display] %s failed: %s', method.name, attempt.error)
            result = PowerResult(False, self.is_on(), None, attempts)
            logger.error('[Display] All display power methods failed; last error: %s', result.error)
            return result

    def toggle(self, power: Optional[bool] = None) -> PowerResult:
        """Switch to ``power``, or flip the stored flag when it is omitted."""
        with self._lock:
            target = (not self.is_on()) if power is None else bool(power)
            return self.set_power(target)

    def probe(self) -> Optional[bool]:
        """Ask the first queryable method for the real panel state, if any can tell."""
        for method in self.methods:
            command = method.query_command()
            if command is None or self._which(method.binary) is None:
                continue
            try:
                completed = self._runner(method, command, config.DISPLAY_COMMAND_TIMEOUT)
            except (subprocess.TimeoutExpired, OSError) as exc:
                logger.debug('[Display] Query via %s failed: %s', method.name, exc)
                continue
            if completed.returncode != 0:
                continue
            value = _parse_query_output(method, completed.stdout)
            if value is not None:
                return value
        return None
