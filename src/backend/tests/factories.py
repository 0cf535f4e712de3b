"""
Test data factories for seeding realistic rows through the repositories.

Usage:
    device = await DeviceFactory.create(db_session)
    problem = await ProblemFactory.create(db_session, device_id=device["id"])
    step = await StepFactory.create(db_session, problem["id"])
"""

import uuid
from typing import Any, Optional

from repositories.device_repository import DeviceRepository
from repositories.diagnostic_step_repository import DiagnosticStepRepository
from repositories.problem_repository import ProblemRepository
from repositories.remote_repository import RemoteRepository
from repositories.tv_interface_repository import TVInterfaceRepository


def _unique_suffix() -> str:
    """Generate a unique suffix for test data."""
    return uuid.uuid4().hex[:8]


class DeviceFactory:
    """Factory for devices."""

    @classmethod
    async def create(cls, db, name: Optional[str] = None, **overrides: Any) -> dict:
        suffix = _unique_suffix()
        data = {
            "name": name or f"OpenBox S{suffix[:2]}",
            "brand": "OpenBox",
            "model": f"S-{suffix}",
            "description": "Спутниковый ресивер",
        }
        data.update(overrides)
        return await DeviceRepository.create(db, data)


class ProblemFactory:
    """Factory for problems."""

    @classmethod
    async def create(cls, db, device_id: str, title: Optional[str] = None, **overrides: Any) -> dict:
        data = {
            "device_id": device_id,
            "title": title or f"Нет сигнала {_unique_suffix()}",
            "description": "Изображение пропало на всех каналах",
            "category": "critical",
        }
        data.update(overrides)
        return await ProblemRepository.create(db, data)


class StepFactory:
    """Factory for diagnostic steps appended with automatic numbering."""

    @classmethod
    async def create(cls, db, problem_id: str, title: Optional[str] = None, **overrides: Any) -> dict:
        data = {
            "problem_id": problem_id,
            "title": title or f"Проверьте кабель {_unique_suffix()}",
            "instruction": "Убедитесь, что кабель подключен к разъему LNB IN",
        }
        data.update(overrides)
        return await DiagnosticStepRepository.create_with_auto_number(db, data)


class RemoteFactory:
    """Factory for remotes."""

    @classmethod
    async def create(cls, db, device_id: Optional[str], **overrides: Any) -> dict:
        suffix = _unique_suffix()
        data = {
            "device_id": device_id,
            "name": f"Пульт {suffix}",
            "manufacturer": "OpenBox",
            "model": f"RC-{suffix}",
            "layout": "standard",
        }
        data.update(overrides)
        return await RemoteRepository.create(db, data)


class TVInterfaceFactory:
    """Factory for TV interfaces."""

    @classmethod
    async def create(cls, db, device_id: str, **overrides: Any) -> dict:
        data = {
            "device_id": device_id,
            "name": f"Главное меню {_unique_suffix()}",
            "type": "home",
            "screenshot_data": "data:image/png;base64,iVBORw0KGgo=",
        }
        data.update(overrides)
        return await TVInterfaceRepository.create(db, data)
