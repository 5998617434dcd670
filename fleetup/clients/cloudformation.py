"""
Stack Client
Creates, waits on and deletes CloudFormation stacks rendered from fleet templates
"""
import time
import logging
from typing import Any, Callable, Dict, Optional

from botocore.exceptions import BotoCoreError, ClientError

from .base import AwsClient, error_code, error_message
from ..constructs.templates import render_template
from ..errors import ProvisioningError
from ..utils.retry_helper import ExponentialBackoff, poll_until


logger = logging.getLogger(__name__)

STABLE_STATUSES = {"CREATE_COMPLETE", "UPDATE_COMPLETE"}
FAILED_STATUSES = {
    "CREATE_FAILED",
    "ROLLBACK_IN_PROGRESS",
    "ROLLBACK_FAILED",
    "ROLLBACK_COMPLETE",
    "DELETE_IN_PROGRESS",
    "DELETE_FAILED",
    "DELETE_COMPLETE",
    "UPDATE_ROLLBACK_COMPLETE",
    "UPDATE_ROLLBACK_FAILED",
}


def _stack_missing(error: ClientError) -> bool:
    return error_code(error) == "ValidationError" and "does not exist" in error_message(error)


class StackClient(AwsClient):
    """CloudFormation operations for fleet stacks"""

    service_name = "cloudformation"

    def __init__(self, region: Optional[str] = None, session: Any = None,
                 template_renderer: Callable[[str], str] = render_template,
                 poll_backoff: Optional[ExponentialBackoff] = None,
                 sleep: Callable[[float], None] = time.sleep) -> None:
        super().__init__(region=region, session=session)
        self._render = template_renderer
        self._poll_backoff = poll_backoff or ExponentialBackoff(base_delay=5.0, max_delay=30.0)
        self._sleep = sleep

    def create_stack(self, template_id: str, stack_name: str, params: Dict[str, str],
                     tags: Optional[Dict[str, str]] = None) -> str:
        """Request stack creation; an existing stack of the same name is reused

        Stack names are deterministic per deployment, so "already exists" means a
        previous run requested this stack and the caller should go on to wait.
        """
        kwargs = {
            "StackName": stack_name,
            "TemplateBody": self._render(template_id),
            "Parameters": [
                {"ParameterKey": key, "ParameterValue": str(value)}
                for key, value in params.items()
            ],
            "Capabilities": ["CAPABILITY_NAMED_IAM"],
            # A failed create is removed so a retry can create it again
            "OnFailure": "DELETE",
        }
        if tags:
            kwargs["Tags"] = [{"Key": k, "Value": v} for k, v in tags.items()]

        try:
            self.client.create_stack(**kwargs)
            logger.info(f"Requested stack {stack_name} from template {template_id}")
        except ClientError as e:
            if error_code(e) == "AlreadyExistsException":
                logger.info(f"Stack {stack_name} already exists; waiting on it instead of recreating")
                return stack_name
            raise ProvisioningError(f"Failed to create stack {stack_name}: {e}") from e
        except BotoCoreError as e:
            raise ProvisioningError(f"Failed to create stack {stack_name}: {e}") from e
        return stack_name

    def _describe(self, stack_name: str) -> Optional[Dict[str, Any]]:
        try:
            stacks = self.client.describe_stacks(StackName=stack_name)["Stacks"]
        except ClientError as e:
            if _stack_missing(e):
                return None
            raise ProvisioningError(f"Failed to describe stack {stack_name}: {e}") from e
        except BotoCoreError as e:
            raise ProvisioningError(f"Failed to describe stack {stack_name}: {e}") from e
        return stacks[0] if stacks else None

    def wait_until_stable(self, stack_name: str, timeout: float) -> Dict[str, str]:
        """Poll until the stack is created and return its outputs"""

        def check() -> Optional[Dict[str, str]]:
            stack = self._describe(stack_name)
            if stack is None:
                raise ProvisioningError(f"Stack {stack_name} does not exist")

            status = stack["StackStatus"]
            if status in STABLE_STATUSES:
                return {o["OutputKey"]: o["OutputValue"] for o in stack.get("Outputs", [])}
            if status in FAILED_STATUSES:
                reason = stack.get("StackStatusReason", "no reason given")
                raise ProvisioningError(f"Stack {stack_name} entered {status}: {reason}")
            return None

        outputs = poll_until(
            check,
            description=f"stack {stack_name} to stabilize",
            timeout=timeout,
            backoff=self._poll_backoff,
            sleep=self._sleep,
        )
        logger.info(f"Stack {stack_name} is stable with outputs {sorted(outputs)}")
        return outputs

    def delete_stack(self, stack_name: str) -> None:
        try:
            self.client.delete_stack(StackName=stack_name)
            logger.info(f"Requested deletion of stack {stack_name}")
        except ClientError as e:
            if _stack_missing(e):
                return
            raise ProvisioningError(f"Failed to delete stack {stack_name}: {e}") from e
        except BotoCoreError as e:
            raise ProvisioningError(f"Failed to delete stack {stack_name}: {e}") from e

    def wait_until_deleted(self, stack_name: str, timeout: float) -> None:
        """Poll until the stack is gone; DELETE_FAILED raises ProvisioningError"""

        def check() -> Optional[bool]:
            stack = self._describe(stack_name)
            if stack is None or stack["StackStatus"] == "DELETE_COMPLETE":
                return True
            if stack["StackStatus"] == "DELETE_FAILED":
                reason = stack.get("StackStatusReason", "no reason given")
                raise ProvisioningError(f"Deletion of stack {stack_name} failed: {reason}")
            return None

        poll_until(
            check,
            description=f"stack {stack_name} to be deleted",
            timeout=timeout,
            backoff=self._poll_backoff,
            sleep=self._sleep,
        )
        logger.info(f"Stack {stack_name} deleted")
