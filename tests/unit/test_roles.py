import pytest

from app.domain.models import PipelineStage
from app.roles import SUPPORTED_ROLES, validate_role
from app.workers.roles import ROLE_TO_STAGE


@pytest.mark.unit
@pytest.mark.parametrize("role", SUPPORTED_ROLES)
def test_supported_role_is_accepted(role: str) -> None:
    validated = validate_role(role)
    assert validated.name == role


@pytest.mark.unit
def test_invalid_role_rejected_with_actionable_message() -> None:
    with pytest.raises(ValueError) as exc_info:
        validate_role("worker-unknown")

    message = str(exc_info.value)
    assert "Unsupported role 'worker-unknown'" in message
    assert "Supported roles:" in message
    assert "migrations run outside the app" in message


@pytest.mark.unit
def test_every_stage_has_exactly_one_worker_role() -> None:
    assert sorted(ROLE_TO_STAGE.values()) == sorted(PipelineStage)
    assert set(ROLE_TO_STAGE) == {role for role in SUPPORTED_ROLES if role.startswith("worker-")}
