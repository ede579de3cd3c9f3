import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from typing import (
    Any,
    Callable,
    Dict,
    Iterator,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    Union,
)

from tapegrad.backend import Backend, get_backend
from tapegrad.config import EngineConfig
from tapegrad.logger import setup_logger
from tapegrad.tensor import Tensor
from tapegrad.tensor_util import convert_to_tensor

logger = logging.getLogger(__name__)


class GradThunk(ABC):
    """
    Lazily computes the gradient of one input of a recorded operation.

    Subclasses hold only the tensors and parameters they need, so a recorded graph
    can be inspected without running it. The engine evaluates a thunk only when
    the input it belongs to leads back to a tensor whose gradient was requested.
    """

    @abstractmethod
    def compute(self) -> Tensor:
        """
        Compute the gradient of the loss with respect to the input (dL/d[input]).

        Returns:
            Tensor: The gradient, shaped like the input.
        """
        raise NotImplementedError("Gradient not implemented for this input")

    def __call__(self) -> Tensor:
        return self.compute()


class GradFunc(ABC):
    """
    Gradient function of one forward invocation.

    Called with the gradient of the loss with respect to the *output* of the
    operation (dL/d[out]), it returns a mapping from input name to a `GradThunk`.
    Inputs missing from the mapping are not differentiable for this call.
    """

    @abstractmethod
    def __call__(self, dy: Tensor) -> Dict[str, GradThunk]:
        raise NotImplementedError("Backward pass not implemented for this function")


# Plain callables with the same shape are accepted as well
GradFuncLike = Union[GradFunc, Callable[[Tensor], Mapping[str, Callable[[], Tensor]]]]


@dataclass
class TapeEntry:
    """
    One `Engine.run_kernel` call recorded while a tape was active.
    """

    kernel_name: str
    inputs: Dict[str, Tensor]
    output: Tensor
    grad_func: Optional[GradFuncLike]


class GradientTape:
    """
    A gradient-recording scope.

    Use it as a context manager: entering it starts recording every kernel the
    engine runs, leaving it stops recording on every exit path. Recorded entries
    are replayed in reverse by `gradient`.

    Example:
        >>> engine = get_engine()
        >>> x = tensor([[1.0, 2.0], [3.0, 4.0]])
        >>> with engine.tape() as tape:
        ...     y = gather(x, [1, 1, 0]).sum()
        >>> dx, = tape.gradient(y, [x])
        >>> dx.tolist()
        [[1.0, 1.0], [2.0, 2.0]]
    """

    def __init__(self, engine: "Engine", persistent: bool = False):
        """
        Args:
            engine (Engine): The engine whose kernels are recorded.
            persistent (bool, optional): Keep the entries after `gradient` so it can be
                called more than once. Defaults to False.
        """
        self.engine = engine
        self.persistent = persistent
        self._entries: Optional[List[TapeEntry]] = []

    @property
    def is_recording(self) -> bool:
        return self._entries is not None

    @property
    def entries(self) -> Tuple[TapeEntry, ...]:
        return tuple(self._entries or ())

    def record(self, entry: TapeEntry) -> None:
        if self._entries is None:
            raise RuntimeError("Cannot record on a gradient tape that was disposed")
        self._entries.append(entry)

    def __enter__(self) -> "GradientTape":
        self.engine._push_tape(self)
        return self

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        self.engine._pop_tape(self)

    def dispose(self) -> None:
        """
        Drop every recorded entry, releasing the tensors they reference.
        """
        self._entries = None

    def gradient(
        self,
        target: Tensor,
        sources: Sequence[Tensor],
        output_gradient: Optional[Any] = None,
    ) -> List[Optional[Tensor]]:
        """
        Compute the gradient of ``target`` with respect to each of ``sources``.

        Args:
            target (Tensor): The tensor to differentiate.
            sources (Sequence[Tensor]): The tensors to differentiate with respect to.
            output_gradient (Optional[Any], optional): dL/d[target]. Defaults to ones
                shaped like ``target``.

        Returns:
            List[Optional[Tensor]]: One gradient per source, or None for a source
            that does not influence ``target``.

        Raises:
            RuntimeError: If this non-persistent tape was already used or disposed.
        """
        if self._entries is None:
            raise RuntimeError(
                "A non-persistent gradient tape can only be used to compute one set of "
                "gradients. Use engine.tape(persistent=True) to call gradient() again."
            )
        entries = self._entries
        if not self.persistent:
            self._entries = None
        return self.engine.backprop(entries, target, sources, output_gradient)


class Engine:
    """
    Owns the active backend and the stack of gradient tapes.

    Every differentiable operation runs through `run_kernel`, which executes the
    forward computation on the backend and, while a tape is recording, stores how
    to compute the gradients of that call.
    """

    def __init__(
        self, backend: Optional[Backend] = None, config: Optional[EngineConfig] = None
    ):
        """
        Args:
            backend (Optional[Backend], optional): The backend to use. Defaults to the
                one named by ``config.backend``.
            config (Optional[EngineConfig], optional): Defaults to `EngineConfig.from_env`.
        """
        self.config = config if config is not None else EngineConfig.from_env()
        if self.config.debug:
            setup_logger("tapegrad", debug=True)
        self._backend = (
            backend if backend is not None else get_backend(self.config.backend)
        )
        self._tapes: List[GradientTape] = []
        self._backprop_depth = 0
        logger.info(f"Engine created with {self._backend.name} backend")

    @property
    def backend(self) -> Backend:
        return self._backend

    def set_backend(self, backend: Union[str, Backend]) -> None:
        """
        Swap the active backend.

        Raises:
            RuntimeError: If a tape is active or a backward pass is running.
        """
        if self._tapes or self._backprop_depth:
            raise RuntimeError(
                "The backend cannot be swapped while a gradient tape is active"
            )
        if isinstance(backend, str):
            backend = get_backend(backend)
        logger.info(f"Switching backend from {self._backend.name} to {backend.name}")
        self._backend = backend

    @property
    def is_recording(self) -> bool:
        if self._backprop_depth:
            return False
        return any(tape.is_recording for tape in self._tapes)

    def run_kernel(
        self,
        forward: Callable[[Backend], Tensor],
        inputs: Mapping[str, Tensor],
        grad_func: Optional[GradFuncLike] = None,
        kernel_name: Optional[str] = None,
    ) -> Tensor:
        """
        Execute ``forward`` on the active backend and record it for backprop.

        Nothing is recorded when ``forward`` raises.

        Args:
            forward (Callable[[Backend], Tensor]): Computes the output from the backend.
            inputs (Mapping[str, Tensor]): Every tensor argument that may need a gradient.
            grad_func (Optional[GradFuncLike], optional): Maps dL/d[out] to one gradient
                thunk per differentiable input.
            kernel_name (Optional[str], optional): Label used on the tape and in logs.

        Returns:
            Tensor: The output of ``forward``.
        """
        output = forward(self._backend)
        if self.is_recording:
            if kernel_name is None:
                kernel_name = getattr(forward, "__name__", type(forward).__name__)
            entry = TapeEntry(kernel_name, dict(inputs), output, grad_func)
            for tape in self._tapes:
                if tape.is_recording:
                    tape.record(entry)
            logger.debug(f"Recorded {kernel_name} -> {output.shape}")
        return output

    def tape(self, persistent: bool = False) -> GradientTape:
        return GradientTape(self, persistent=persistent)

    def _push_tape(self, tape: GradientTape) -> None:
        self._tapes.append(tape)

    def _pop_tape(self, tape: GradientTape) -> None:
        if not self._tapes or self._tapes[-1] is not tape:
            raise RuntimeError("Gradient tapes must be exited in reverse order of entry")
        self._tapes.pop()

    @contextmanager
    def _backprop_scope(self) -> Iterator[None]:
        # Kernels run by gradient thunks are not recorded
        self._backprop_depth += 1
        try:
            yield
        finally:
            self._backprop_depth -= 1

    def backprop(
        self,
        entries: Sequence[TapeEntry],
        target: Tensor,
        sources: Sequence[Tensor],
        output_gradient: Optional[Any] = None,
    ) -> List[Optional[Tensor]]:
        """
        Replay ``entries`` in reverse to compute dL/d[source] for each source.

        1. A forward sweep marks every tensor that depends on a source, so only the
           thunks of those inputs are evaluated.
        2. The backward sweep visits entries in exact reverse order of creation. By
           then every consumer of a tensor has contributed its share of the gradient,
           and contributions from several consumers are summed.

        Args:
            entries (Sequence[TapeEntry]): The recorded entries, in creation order.
            target (Tensor): The tensor being differentiated.
            sources (Sequence[Tensor]): The tensors to differentiate with respect to.
            output_gradient (Optional[Any], optional): dL/d[target]. Defaults to ones.

        Returns:
            List[Optional[Tensor]]: One gradient per source, None where unconnected.

        Raises:
            RuntimeError: If a gradient thunk returns a tensor of the wrong shape.
        """
        if output_gradient is None:
            dy = self._backend.ones(target.shape, "float32")
        else:
            dy = convert_to_tensor(output_gradient, "output_gradient", "gradient")
            if dy.shape != target.shape:
                raise RuntimeError(
                    f"The output gradient has shape {dy.shape}, "
                    f"but the target has shape {target.shape}"
                )

        depends_on_source = {s.id for s in sources}
        for entry in entries:
            if any(x.id in depends_on_source for x in entry.inputs.values()):
                depends_on_source.add(entry.output.id)

        grads: Dict[int, Tensor] = {target.id: dy}
        with self._backprop_scope():
            for entry in reversed(entries):
                out_grad = grads.get(entry.output.id)
                if (
                    out_grad is None
                    or entry.grad_func is None
                    or entry.output.id not in depends_on_source
                ):
                    continue
                thunks = entry.grad_func(out_grad)
                for name, x in entry.inputs.items():
                    thunk = thunks.get(name)
                    if thunk is None or x.id not in depends_on_source:
                        continue
                    grad = thunk()
                    if grad.shape != x.shape:
                        raise RuntimeError(
                            f"Error in gradient for op {entry.kernel_name}. The gradient "
                            f"of input '{name}' has shape {grad.shape}, but the input "
                            f"has shape {x.shape}"
                        )
                    if x.id in grads:
                        grads[x.id] = self._backend.add(grads[x.id], grad)
                    else:
                        grads[x.id] = grad
        logger.debug(
            f"Backward pass over {len(entries)} tape entries for {len(sources)} source(s)"
        )

        return [grads.get(s.id) for s in sources]

    def gradients(
        self,
        f: Callable[..., Tensor],
        xs: Sequence[Tensor],
        dy: Optional[Any] = None,
    ) -> Tuple[Tensor, List[Optional[Tensor]]]:
        """
        Evaluate ``f(*xs)`` on a fresh tape and differentiate it with respect to ``xs``.

        Args:
            f (Callable[..., Tensor]): The function to differentiate.
            xs (Sequence[Tensor]): Its arguments.
            dy (Optional[Any], optional): dL/d[f(xs)]. Defaults to ones.

        Returns:
            Tuple[Tensor, List[Optional[Tensor]]]: The value of ``f(*xs)`` and the
            gradient with respect to each of ``xs``.
        """
        with self.tape() as tape:
            value = f(*xs)
        return value, tape.gradient(value, xs, dy)


_engine: Optional[Engine] = None


def get_engine() -> Engine:
    """
    Return the process-wide default engine, creating it on first use.
    """
    global _engine
    if _engine is None:
        _engine = Engine()
    return _engine


def set_engine(engine: Optional[Engine]) -> Optional[Engine]:
    """
    Install ``engine`` as the default engine.

    Passing None makes the next `get_engine` call create a fresh one.

    Returns:
        Optional[Engine]: The previous default engine.
    """
    global _engine
    previous, _engine = _engine, engine
    return previous
