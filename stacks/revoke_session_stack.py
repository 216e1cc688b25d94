import os

from aws_cdk import (
    CfnOutput,
    Duration,
    RemovalPolicy,
    Stack,
    aws_cloudwatch as cloudwatch,
    aws_iam as iam,
    aws_lambda as _lambda,
    aws_logs as logs,
)
from constructs import Construct


class RevokeSessionStack(Stack):
    """
    Deploys the revoke-session action as a single Lambda function.

    The function revokes sessions with credentials supplied per invocation, so
    its execution role only needs CloudWatch Logs access.
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        schema_version: str = "2026-10-01",
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        log_level = os.getenv("LOG_LEVEL", "info").strip().lower()
        if log_level not in {"debug", "info", "warn", "error"}:
            raise ValueError("LOG_LEVEL must be one of debug, info, warn, error")

        data_retention_mode = os.getenv("DATA_RETENTION_MODE", "destroy").strip().lower()
        if data_retention_mode not in {"destroy", "retain"}:
            raise ValueError(
                "DATA_RETENTION_MODE must be 'destroy' or 'retain' (case-insensitive)"
            )
        log_removal_policy = (
            RemovalPolicy.DESTROY
            if data_retention_mode == "destroy"
            else RemovalPolicy.RETAIN
        )

        execution_role = iam.Role(
            self,
            "RevokeSessionExecutionRole",
            assumed_by=iam.ServicePrincipal("lambda.amazonaws.com"),
            managed_policies=[
                iam.ManagedPolicy.from_aws_managed_policy_name(
                    "service-role/AWSLambdaBasicExecutionRole"
                )
            ],
        )

        revoke_fn = _lambda.Function(
            self,
            "RevokeSessionHandler",
            runtime=_lambda.Runtime.PYTHON_3_12,
            handler="revoke_session.handler",
            code=_lambda.Code.from_asset("lambda"),
            timeout=Duration.seconds(30),
            role=execution_role,
            environment={
                "SCHEMA_VERSION": schema_version,
                "LOG_LEVEL": log_level,
            },
        )

        log_group = logs.LogGroup(
            self,
            "RevokeSessionLogGroup",
            log_group_name=f"/aws/lambda/{revoke_fn.function_name}",
            retention=logs.RetentionDays.ONE_MONTH,
            removal_policy=log_removal_policy,
        )

        error_metric = cloudwatch.Metric(
            namespace="AWSRevokeSession",
            metric_name="Errors",
            statistic="Sum",
            period=Duration.minutes(5),
        )

        logs.MetricFilter(
            self,
            "RevokeSessionErrorMetricFilter",
            log_group=log_group,
            metric_namespace="AWSRevokeSession",
            metric_name="Errors",
            filter_pattern=logs.FilterPattern.string_value("$.level", "=", "error"),
            metric_value="1",
        )

        cloudwatch.Alarm(
            self,
            "RevokeSessionErrorsAlarm",
            metric=error_metric,
            threshold=1,
            evaluation_periods=1,
            datapoints_to_alarm=1,
        )

        CfnOutput(
            self,
            "RevokeSessionFunctionName",
            value=revoke_fn.function_name,
            description="Lambda function that applies the session revocation policy.",
        )
        CfnOutput(
            self,
            "RevokeSessionFunctionArn",
            value=revoke_fn.function_arn,
            description="ARN of the session revocation function.",
        )
