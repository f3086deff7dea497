"""
Resource adoption — import what cannot be deleted, untrack it on teardown.

GCP KMS key rings and crypto keys cannot be deleted. A test that creates
them would fail on its second run ("already exists"), and a plain
``tofu destroy`` at teardown would fail on them too. So the bootstrap
test uses stable names and:

  1. before apply, imports each ring/key into state if it already exists;
  2. at teardown, destroys only the ephemeral resources (targeted destroy),
  3. then removes the KMS resources from state, newest first, whether
     they were imported or created by this run, so the next run adopts
     them again;
  4. finally runs best-effort fallbacks (direct bucket delete).

Every teardown step is independent: a failure is logged and the next
step still runs. A failed state removal is harmless (init or apply may
never have happened). A failed targeted destroy fails the cleanup action
once every step has run, so the workspace holding the state is kept and
recorded as an orphan.

Tests that adopt fixed-name resources must not run in parallel.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, List, Sequence, Tuple

from .cleanup import CleanupAction, CleanupStack
from .errors import HarnessError

if TYPE_CHECKING:
    from .gcloud import Gcloud
    from .tofu import TofuStack

logger = logging.getLogger(__name__)

KEY_RING_ADDRESS = "google_kms_key_ring.state_ring"
CRYPTO_KEY_ADDRESS = "google_kms_crypto_key.state_key"
STATE_BUCKET_TARGETS = (
    "google_storage_bucket_iam_member.extra",
    "google_kms_crypto_key_iam_member.extra",
    "google_storage_bucket.state_bucket",
)


@dataclass
class RetainedResource:
    """A cloud object that outlives every test run.

    Attributes:
        address: Resource address in the module ('google_kms_key_ring.x').
        import_id: Provider import id.
        probe: Returns True if the object already exists in the cloud.
    """

    address: str
    import_id: str
    probe: Callable[[], bool]


@dataclass
class AdoptionPlan:
    """What to adopt and what to tear down for one stack.

    Attributes:
        retained: Retained resources in dependency order (ring before key).
        ephemeral_targets: Addresses destroyed at teardown.
        fallbacks: (label, callable) pairs run last, best-effort.
    """

    retained: List[RetainedResource] = field(default_factory=list)
    ephemeral_targets: Sequence[str] = ()
    fallbacks: List[Tuple[str, Callable[[], object]]] = field(default_factory=list)


@dataclass
class AdoptionResult:
    """Which retained resources were imported and which were left to apply."""

    imported: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


def adopt(stack: "TofuStack", plan: AdoptionPlan) -> AdoptionResult:
    """Import every retained resource that already exists.

    Run after ``init`` and before ``apply``.

    Raises:
        CommandError: An import failed; the stack cannot be applied safely.
    """
    result = AdoptionResult()
    for resource in plan.retained:
        if resource.probe():
            logger.info("Adopting existing %s (%s)", resource.address, resource.import_id)
            stack.import_resource(resource.address, resource.import_id)
            result.imported.append(resource.address)
        else:
            logger.info("%s does not exist yet; apply will create it", resource.address)
            result.skipped.append(resource.address)
    return result


def release(stack: "TofuStack", plan: AdoptionPlan) -> List[str]:
    """Tear down ephemeral resources and untrack retained ones.

    Never raises.

    Returns:
        Labels of the steps that failed (empty when all succeeded).
    """
    failures: List[str] = []

    if plan.ephemeral_targets:
        try:
            stack.destroy(targets=plan.ephemeral_targets)
        except Exception as exc:
            logger.warning("cleanup: tofu destroy returned error (ignored): %s", exc)
            failures.append("destroy")

    for resource in reversed(plan.retained):
        try:
            stack.state_rm(resource.address)
        except Exception as exc:
            logger.warning(
                "cleanup: tofu state rm %s returned error (ignored): %s",
                resource.address, exc,
            )
            failures.append(f"state rm {resource.address}")

    for label, fallback in plan.fallbacks:
        try:
            fallback()
        except Exception as exc:
            logger.warning("cleanup: best-effort %s failed: %s", label, exc)
            failures.append(label)

    return failures


def _release_or_fail(stack: "TofuStack", plan: AdoptionPlan) -> None:
    failures = release(stack, plan)
    if "destroy" in failures:
        raise HarnessError(
            f"targeted destroy of {stack.name} failed; ephemeral resources may be orphaned"
        )


def defer_release(cleanup: CleanupStack, stack: "TofuStack", plan: AdoptionPlan) -> CleanupAction:
    """Register ``release`` in place of a full destroy.

    The action fails, and its workspace is kept, only when the targeted
    destroy failed.
    """
    return cleanup.push(CleanupAction(
        name=f"release {stack.name}",
        func=lambda: _release_or_fail(stack, plan),
        workdir=stack.workdir,
        var_file=stack.var_file,
        binary=stack.options.binary,
        env_vars=stack.options.env_vars,
    ))


def key_ring_id(project: str, location: str, ring: str) -> str:
    return f"projects/{project}/locations/{location}/keyRings/{ring}"


def crypto_key_id(project: str, location: str, ring: str, key: str) -> str:
    return f"{key_ring_id(project, location, ring)}/cryptoKeys/{key}"


def kms_state_bucket_plan(
    gcloud: "Gcloud",
    project: str,
    location: str,
    ring: str,
    key: str,
    bucket: str = "",
) -> AdoptionPlan:
    """Plan for the bootstrap module: KMS-encrypted Terraform state bucket.

    Args:
        gcloud: Project-scoped gcloud wrapper, used for probes and fallback.
        project: GCP project id.
        location: KMS and bucket location.
        ring: Stable key ring name.
        key: Stable crypto key name.
        bucket: Ephemeral bucket name; when set, a direct delete of
            ``gs://<bucket>`` is the final fallback.
    """
    plan = AdoptionPlan(
        retained=[
            RetainedResource(
                address=KEY_RING_ADDRESS,
                import_id=key_ring_id(project, location, ring),
                probe=lambda: gcloud.kms_keyring_exists(location, ring),
            ),
            RetainedResource(
                address=CRYPTO_KEY_ADDRESS,
                import_id=crypto_key_id(project, location, ring, key),
                probe=lambda: gcloud.kms_crypto_key_exists(location, ring, key),
            ),
        ],
        ephemeral_targets=STATE_BUCKET_TARGETS,
    )
    if bucket:
        plan.fallbacks.append(
            (f"gcloud bucket delete gs://{bucket}", lambda: gcloud.delete_bucket(bucket)),
        )
    return plan
