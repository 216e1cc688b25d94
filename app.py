#!/usr/bin/env python3
import os

import aws_cdk as cdk

from stacks.revoke_session_stack import RevokeSessionStack

app = cdk.App()

stack_name = os.getenv("CDK_STACK_NAME", "RevokeSessionStack")

RevokeSessionStack(
    app,
    stack_name,
    schema_version=os.getenv("SCHEMA_VERSION", "2026-10-01"),
    env=cdk.Environment(
        account=os.getenv("CDK_DEFAULT_ACCOUNT"),
        region=os.getenv("CDK_DEFAULT_REGION", "us-east-1"),
    ),
)

app.synth()
