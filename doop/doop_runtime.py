"""
The call boundary: loads a parsed script, runs the Evaluator and turns
errors into located diagnostics.
"""
from dataclasses import dataclass, field
from typing import Any, List, Optional, Literal, Dict

import yaml

from doop.doop_datatypes import Script, TokenSequence, DoopError, TransformError
from doop.doop_interpreter import Evaluator
from doop.doop_transformer import DoopTransformer
from doop.doop_serialize import deserialize
from doop.doop_printer import Printer


@dataclass
class ExecutionResult:
    """The structured result of a script evaluation."""
    status: Literal['success', 'error']
    value: Optional[TokenSequence] = None
    error_message: Optional[str] = None
    error_token: Optional[Dict[str, Any]] = None
    side_effects: List[Dict] = field(default_factory=list)

    def format_error(self) -> str:
        """Formats an error message with line and column if available."""
        if self.status != 'error':
            return ""
        msg = str(self.error_message or "Unknown error")
        if self.error_token and self.error_token.get('line') is not None:
            line = self.error_token.get('line')
            col = self.error_token.get('col')
            col_info = f", col {col}" if col is not None else ""
            return f"Error on line {line}{col_info}: {msg}"
        return msg

    def format_value(self) -> str:
        """Renders the output tokens as surface text (empty on error)."""
        if self.status != 'success' or self.value is None:
            return ""
        return Printer().pformat(self.value)


class ScriptRunner:
    """Loads, transforms and evaluates doop scripts."""

    _transformer: Optional[DoopTransformer] = None

    def __init__(self, debug: Optional[bool] = None):
        if ScriptRunner._transformer is None:
            ScriptRunner._transformer = DoopTransformer()
        self.transformer = ScriptRunner._transformer
        # Each runner has its own evaluator; the binding store is per evaluation
        self.evaluator = Evaluator(debug=debug)

    def load(self, source: Any, fmt: Optional[str] = None) -> Script:
        """Accepts a Script, a node tree, or JSON/YAML text holding a node tree."""
        if isinstance(source, Script):
            return source
        if isinstance(source, (str, bytes, bytearray)):
            source = deserialize(source, fmt=fmt)
        script = self.transformer.transform(source)
        if not isinstance(script, Script):
            raise TransformError(f"Expected a script, got {type(script).__name__}", source)
        return script

    def run(self, source: Any, fmt: Optional[str] = None) -> TokenSequence:
        """Evaluate and return the output tokens; raises DoopError on failure."""
        return self.evaluator.eval(self.load(source, fmt))

    def handle_script(self, source: Any, fmt: Optional[str] = None) -> ExecutionResult:
        """Evaluate a script and report the outcome instead of raising."""
        try:
            value = self.run(source, fmt)
        except DoopError as e:
            return self._error_result(f"{type(e).__name__}: {e}", e.loc)
        except yaml.YAMLError as e:
            mark = getattr(e, 'problem_mark', None)
            loc = {'line': mark.line + 1, 'col': mark.column + 1} if mark is not None else None
            return self._error_result(f"ParseError: {e}", loc)
        return ExecutionResult('success', value=value)

    def _error_result(self, message: str, loc: Optional[Dict[str, Any]]) -> ExecutionResult:
        result = ExecutionResult('error', error_message=message, error_token=loc)
        formatted = result.format_error()
        self.evaluator._dbg("ERROR", formatted)
        result.side_effects.append({'topics': ['stderr'], 'message': formatted})
        return result
