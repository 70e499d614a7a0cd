"""
AWS Client for SNS notifications

The engine only produces facts (LEVEL_UP, BADGES_AWARDED); formatting and
delivery belong to whoever subscribes to the topic.
"""
import json
import logging
from typing import Any, Dict, List, Optional

import boto3

from points_service.config import get_settings

logger = logging.getLogger(__name__)

LEVEL_UP = "LEVEL_UP"
BADGES_AWARDED = "BADGES_AWARDED"


class AWSClient:
    """AWS services client wrapper"""

    def __init__(self, settings=None):
        self.settings = settings or get_settings()
        self._sns_client = None

    @property
    def sns(self):
        """Lazy initialization of SNS client"""
        if self._sns_client is None:
            kwargs = {
                'region_name': self.settings.AWS_REGION,
                'aws_access_key_id': self.settings.AWS_ACCESS_KEY_ID,
                'aws_secret_access_key': self.settings.AWS_SECRET_ACCESS_KEY,
            }
            if self.settings.SNS_ENDPOINT:
                kwargs['endpoint_url'] = self.settings.SNS_ENDPOINT

            self._sns_client = boto3.client('sns', **kwargs)
        return self._sns_client

    async def publish_notification(
        self,
        message: str,
        subject: Optional[str] = None,
        attributes: Optional[dict] = None
    ) -> Optional[str]:
        """
        Publish notification to SNS topic

        Args:
            message: Notification message
            subject: Message subject (optional)
            attributes: Message attributes (optional)

        Returns:
            Message ID if published successfully
        """
        if not self.settings.SNS_TOPIC_ARN:
            logger.warning("SNS_TOPIC_ARN not configured, skipping notification")
            return None

        try:
            kwargs = {
                'TopicArn': self.settings.SNS_TOPIC_ARN,
                'Message': message,
            }

            if subject:
                kwargs['Subject'] = subject

            if attributes:
                kwargs['MessageAttributes'] = {
                    k: {'DataType': 'String', 'StringValue': str(v)}
                    for k, v in attributes.items()
                }

            response = self.sns.publish(**kwargs)
            message_id = response['MessageId']

            logger.info(f"Published SNS notification: {message_id}")
            return message_id

        except Exception as e:
            logger.error(f"Error publishing notification: {str(e)}")
            return None

    async def notify_level_up(self, student_id: str, student_name: Optional[str], new_level: int):
        """Publish a LEVEL_UP fact"""
        fact: Dict[str, Any] = {
            'studentId': student_id,
            'studentName': student_name,
            'newLevel': new_level,
        }
        await self.publish_notification(
            message=json.dumps(fact),
            subject="Level up",
            attributes={
                'event_type': LEVEL_UP,
                'student_id': student_id,
                'new_level': str(new_level),
            }
        )

    async def notify_badges_awarded(self, student_id: str, badges: List[str]):
        """Publish a BADGES_AWARDED fact with the badge names"""
        fact: Dict[str, Any] = {
            'studentId': student_id,
            'badges': list(badges),
        }
        await self.publish_notification(
            message=json.dumps(fact),
            subject="Badges awarded",
            attributes={
                'event_type': BADGES_AWARDED,
                'student_id': student_id,
            }
        )


# Global instance
aws_client = AWSClient()
