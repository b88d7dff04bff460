from .resolve_workflow import Phase, Resolver, build_resolver, next_phase, resolve

__all__ = [
    "Phase",
    "Resolver",
    "build_resolver",
    "next_phase",
    "resolve",
]
