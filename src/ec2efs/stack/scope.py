"""CDK app and stack scaffolding.

Stacks are synthesized without the bootstrap stack: the template is applied
directly through CloudFormation and carries no staged file assets.
"""
from __future__ import annotations

from typing import cast

from aws_cdk import App, BootstraplessSynthesizer, CfnResource, Environment, Stack, Stage
from constructs import Construct

from ..context import EnvironmentContext


def create_stack(context: EnvironmentContext, *, description: str | None = None) -> Stack:
    """Return an empty stack bound to the context's account and region."""
    app = App(analytics_reporting=False)
    return Stack(
        app,
        context.stack_name,
        stack_name=context.stack_name,
        env=Environment(account=context.account_id, region=context.region),
        description=description,
        synthesizer=BootstraplessSynthesizer(),
    )


def synthesize(stack: Stack) -> dict[str, object]:
    """Synthesize the enclosing app and return *stack*'s template document."""
    assembly = Stage.of(stack).synth()
    return dict(assembly.get_stack_artifact(stack.artifact_id).template)


def pin_logical_id(construct: Construct, logical_id: str) -> None:
    """Give the construct's primary resource a stable logical id."""
    cast(CfnResource, construct.node.default_child).override_logical_id(logical_id)


__all__ = ["create_stack", "pin_logical_id", "synthesize"]
