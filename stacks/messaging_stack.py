from __future__ import annotations

from dataclasses import dataclass

from aws_cdk import Duration, Stack, aws_sqs as sqs
from constructs import Construct

from stacks.application_environment import ApplicationEnvironment
from stacks.parameter_store import component_parameter_name, read_parameter, write_parameter

COMPONENT = "Messaging"

PARAMETER_TODO_SHARING_QUEUE_NAME = "todoSharingQueueName"


@dataclass(frozen=True)
class MessagingOutputParameters:
    todo_sharing_queue_name: str


class MessagingStack(Stack):
    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        application_environment: ApplicationEnvironment,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        self.application_environment = application_environment

        self.todo_sharing_dlq = sqs.Queue(
            self,
            "todoSharingDlq",
            queue_name=application_environment.prefix("todo-sharing-dead-letter-queue"),
            retention_period=Duration.days(14),
        )

        # Messages that fail three receives are parked in the dead-letter queue.
        self.todo_sharing_queue = sqs.Queue(
            self,
            "todoSharingQueue",
            queue_name=application_environment.prefix("todo-sharing-queue"),
            visibility_timeout=Duration.seconds(30),
            dead_letter_queue=sqs.DeadLetterQueue(
                queue=self.todo_sharing_dlq,
                max_receive_count=3,
            ),
        )

        application_environment.tag(self)

        write_parameter(
            self,
            PARAMETER_TODO_SHARING_QUEUE_NAME,
            name=component_parameter_name(
                application_environment, COMPONENT, PARAMETER_TODO_SHARING_QUEUE_NAME
            ),
            value=self.todo_sharing_queue.queue_name,
        )

    @staticmethod
    def get_output_parameters_from_parameter_store(
        scope: Construct, application_environment: ApplicationEnvironment
    ) -> MessagingOutputParameters:
        return MessagingOutputParameters(
            todo_sharing_queue_name=read_parameter(
                scope,
                component_parameter_name(
                    application_environment, COMPONENT, PARAMETER_TODO_SHARING_QUEUE_NAME
                ),
            )
        )
