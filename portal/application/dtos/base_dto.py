# portal/application/dtos/base_dto.py

"""
Base class for the application's DTOs.
"""

from typing import Any, Dict

from pydantic import BaseModel


class CustomBaseModel(BaseModel):
    """
    Base model for every DTO. Serialization drops fields whose value is None.
    """

    def model_dump(self, *args, **kwargs) -> Dict[str, Any]:
        kwargs.setdefault("exclude_none", True)
        return super().model_dump(*args, **kwargs)
