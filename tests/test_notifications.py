"""
Tests for the SNS notification client
"""
import json
import logging
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from points_service.aws_client import AWSClient


def make_settings(**overrides):
    values = {
        'AWS_REGION': 'us-east-1',
        'AWS_ACCESS_KEY_ID': None,
        'AWS_SECRET_ACCESS_KEY': None,
        'SNS_TOPIC_ARN': 'arn:aws:sns:us-east-1:000000000000:points-events',
        'SNS_ENDPOINT': None,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


@pytest.fixture
def sns():
    client = MagicMock()
    client.publish.return_value = {'MessageId': 'msg-1'}
    return client


@pytest.fixture
def aws(sns):
    client = AWSClient(settings=make_settings())
    client._sns_client = sns
    return client


class TestPublishNotification:

    async def test_level_up_fact(self, aws, sns):
        await aws.notify_level_up('student-1', 'Alice', 3)

        kwargs = sns.publish.call_args.kwargs
        assert kwargs['TopicArn'].endswith(':points-events')
        assert json.loads(kwargs['Message']) == {'studentId': 'student-1', 'studentName': 'Alice', 'newLevel': 3}
        assert kwargs['MessageAttributes']['event_type'] == {'DataType': 'String', 'StringValue': 'LEVEL_UP'}
        assert kwargs['MessageAttributes']['new_level']['StringValue'] == '3'

    async def test_badges_awarded_fact(self, aws, sns):
        await aws.notify_badges_awarded('student-1', ['Regular', 'Hundred'])

        kwargs = sns.publish.call_args.kwargs
        assert json.loads(kwargs['Message']) == {'studentId': 'student-1', 'badges': ['Regular', 'Hundred']}
        assert kwargs['MessageAttributes']['event_type']['StringValue'] == 'BADGES_AWARDED'

    async def test_returns_message_id(self, aws):
        assert await aws.publish_notification('hello', subject='Hi') == 'msg-1'

    async def test_skipped_without_topic(self, sns, caplog):
        client = AWSClient(settings=make_settings(SNS_TOPIC_ARN=None))
        client._sns_client = sns

        with caplog.at_level(logging.WARNING):
            result = await client.notify_level_up('student-1', 'Alice', 2)

        assert result is None
        sns.publish.assert_not_called()
        assert "SNS_TOPIC_ARN not configured" in caplog.text

    async def test_publish_errors_are_not_raised(self, aws, sns, caplog):
        sns.publish.side_effect = RuntimeError("throttled")

        with caplog.at_level(logging.ERROR):
            result = await aws.publish_notification('hello')

        assert result is None
        assert "Error publishing notification" in caplog.text


class TestClientConstruction:

    def test_sns_client_uses_endpoint(self):
        settings = make_settings(SNS_ENDPOINT='http://localhost:4566')

        with patch('points_service.aws_client.boto3.client') as boto_client:
            AWSClient(settings=settings).sns

        boto_client.assert_called_once_with(
            'sns',
            region_name='us-east-1',
            aws_access_key_id=None,
            aws_secret_access_key=None,
            endpoint_url='http://localhost:4566',
        )

    def test_sns_client_is_lazy_and_cached(self):
        with patch('points_service.aws_client.boto3.client') as boto_client:
            client = AWSClient(settings=make_settings())
            boto_client.assert_not_called()
            first = client.sns
            second = client.sns

        assert first is second
        boto_client.assert_called_once()
