"""Sesiones de QA locales para Rate Glance."""

from __future__ import annotations

import nox

SOURCE_DIRS = ("infrastructure", "services", "shared", "scripts", "tests")

nox.options.reuse_existing_virtualenvs = True
nox.options.sessions = ("lint", "typecheck", "tests", "security")


def _install_project(session: nox.Session, *extras: str) -> None:
    """Instala el proyecto en modo editable con los extras pedidos."""

    target = f".[{','.join(extras)}]" if extras else "."
    session.install("-e", target)


@nox.session
def lint(session: nox.Session) -> None:
    """Ejecuta flake8 sobre los módulos principales."""

    _install_project(session, "dev")
    session.run("flake8", "--max-line-length=110", *SOURCE_DIRS)


@nox.session
def typecheck(session: nox.Session) -> None:
    """Valida los tipos usando mypy."""

    _install_project(session, "dev", "test")
    session.run("mypy", *SOURCE_DIRS)


@nox.session
def tests(session: nox.Session) -> None:
    """Ejecuta la suite de pytest con cobertura."""

    _install_project(session, "test")
    session.run(
        "pytest",
        "--cov=services",
        "--cov=infrastructure",
        "--cov=shared",
        "--cov-report=term-missing",
        *session.posargs,
    )


@nox.session
def security(session: nox.Session) -> None:
    """Ejecuta verificaciones de seguridad con bandit y pip-audit."""

    _install_project(session, "dev")
    session.run("bandit", "-q", "-r", "infrastructure", "services", "shared", "scripts")
    session.run("pip-audit")
