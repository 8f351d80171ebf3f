from __future__ import annotations

import inspect
import typing
from typing import Any, Protocol, cast, get_type_hints

from ._pointers import SharedPointer
from ._services import SharedService


def validate_shared(service: object, instance: object) -> None:
    """Check that `instance` may be stored as the shared instance of `service`.

    - it must be a `SharedPointer`
    - for a `SharedService`, it must be of the declared `pointer` class
    - for a Protocol key, the guarded value must conform to the protocol.
    """
    if not isinstance(instance, SharedPointer):
        msg = f"Shared instance of {service_name(service)} must be a SharedPointer, got {type(instance).__name__}"
        raise TypeError(msg)

    if inspect.isclass(service) and issubclass(service, SharedService):
        if not isinstance(instance, service.pointer):
            msg = (
                f"Shared instance of {service.__name__}: pointer kind must be {service.pointer.__name__}, "
                f"got {type(instance).__name__}"
            )
            raise TypeError(msg)

    if is_protocol(service):
        value = instance._peek()  # noqa: SLF001
        validate_instance(cast("type", service), value)


def validate_local(service: object, instance: object) -> None:
    """Local instances are only checked against Protocol keys."""
    if is_protocol(service):
        validate_instance(cast("type", service), instance)


def validate_instance(proto_cls: type, instance: object) -> None:
    try:
        validate_protocol_impl(proto_cls, type(instance))
    except TypeError as e:
        msg = f"Resolved instance {type(instance).__name__} does not conform to protocol {proto_cls.__name__}"
        raise TypeError(msg) from e

    if is_runtime_checkable_protocol(proto_cls) and not isinstance(instance, proto_cls):
        msg = f"Resolved instance {type(instance).__name__} does not implement runtime protocol {proto_cls.__name__}"
        raise TypeError(msg)


if hasattr(typing, "is_protocol"):
    # https://docs.python.org/3/library/typing.html#typing.is_protocol
    def is_protocol(tp: object) -> bool:
        return inspect.isclass(tp) and typing.is_protocol(tp)

else:

    def is_protocol(tp: object) -> bool:
        return (
            inspect.isclass(tp)
            and issubclass(tp, cast("type", Protocol))
            and bool(getattr(tp, "_is_protocol", False))
        )


def is_runtime_checkable_protocol(tp: type) -> bool:
    if not is_protocol(tp):
        return False

    try:
        isinstance(None, tp)
    except TypeError:
        return False
    else:
        return True


def validate_protocol_impl(proto_cls: type, impl: type) -> None:
    # nominal conformance
    if proto_cls in getattr(impl, "__mro__", ()):
        return

    _validate_structural_conformance(proto_cls, impl)


def _validate_structural_conformance(proto_cls: type, impl: type) -> None:  # noqa: C901
    """Best-effort structural check: members present, positional arity, return types."""
    missing: list[str] = []
    mismatches: list[str] = []

    try:
        proto_hints = get_type_hints(proto_cls, include_extras=True)
    except (NameError, TypeError):
        proto_hints = {}

    for name in proto_hints:
        if not name.startswith("_") and not hasattr(impl, name):
            missing.append(name)

    for name, proto_attr in proto_cls.__dict__.items():
        if name.startswith("_") or not inspect.isfunction(proto_attr):
            continue

        if not hasattr(impl, name):
            missing.append(name)
            continue

        impl_attr = getattr(impl, name)
        if not callable(impl_attr):
            mismatches.append(f"{name}: not callable on {impl.__name__}")
            continue

        try:
            proto_sig = inspect.signature(proto_attr)
            impl_sig = inspect.signature(impl_attr)
        except (TypeError, ValueError) as e:
            mismatches.append(f"{name}: unable to compare signatures ({e})")
            continue

        proto_arity = _required_positional(proto_sig)
        impl_arity = _required_positional(impl_sig)
        if impl_arity > proto_arity:
            mismatches.append(
                f"{name}: impl requires more positional params ({impl_arity}) than protocol ({proto_arity})"
            )
        elif impl_arity < proto_arity and not _accepts_positional(impl_sig, proto_arity):
            mismatches.append(
                f"{name}: impl accepts fewer positional params ({impl_arity}) than protocol ({proto_arity})"
            )

        proto_ret = proto_sig.return_annotation
        impl_ret = impl_sig.return_annotation
        if (
            proto_ret is not inspect.Signature.empty
            and impl_ret is not inspect.Signature.empty
            and proto_ret is not Any
            and impl_ret is not Any
            and not _is_return_type_compatible(impl_ret, proto_ret)
        ):
            mismatches.append(f"{name}: return type {impl_ret!r} is not compatible with {proto_ret!r}")

    if missing or mismatches:
        details = []
        if missing:
            details.append(f"missing members: {', '.join(missing)}")
        if mismatches:
            details.append(f"signature mismatches: {', '.join(mismatches)}")

        msg = (
            f"Implementation {impl.__name__} does not structurally conform to protocol "
            f"{proto_cls.__name__}: {'; '.join(details)}"
        )
        raise TypeError(msg)


_POSITIONAL = (inspect.Parameter.POSITIONAL_ONLY, inspect.Parameter.POSITIONAL_OR_KEYWORD)


def _params(sig: inspect.Signature) -> list[inspect.Parameter]:
    return [p for p in sig.parameters.values() if p.name != "self"]


def _required_positional(sig: inspect.Signature) -> int:
    return sum(1 for p in _params(sig) if p.kind in _POSITIONAL and p.default is inspect.Parameter.empty)


def _accepts_positional(sig: inspect.Signature, count: int) -> bool:
    params = _params(sig)
    if any(p.kind is inspect.Parameter.VAR_POSITIONAL for p in params):
        return True
    return sum(1 for p in params if p.kind in _POSITIONAL) >= count


def _is_return_type_compatible(impl_ret: object, proto_ret: object) -> bool:
    if impl_ret == proto_ret:
        return True

    if isinstance(impl_ret, type) and isinstance(proto_ret, type):
        return issubclass(impl_ret, proto_ret)

    # Union, Protocol, TypeVar, string annotations: no match
    return False


def service_name(service: object) -> str:
    return getattr(service, "__qualname__", None) or repr(service)
