from doop.doop_datatypes import (
    Atom, Group, TokenSequence, OrderedTokenSet, BindingStore,
    NameTerm, ListTerm, RestTerm,
    NameTarget, WildcardTarget, TupleTarget,
    Static, LetDecl, ForBinding, ForDecl, Script,
    DoopError, UndefinedBinding, ArityMismatch, MalformedTupleTarget,
    BindingCollision, TransformError,
)
from doop.doop_interpreter import Evaluator, substitute
from doop.doop_transformer import DoopTransformer
from doop.doop_printer import Printer
from doop.doop_serialize import serialize, deserialize
from doop.doop_runtime import ScriptRunner, ExecutionResult
