"""
Tests for per-provider authentication.
"""

from unittest.mock import MagicMock, patch

import httpx
import pytest
from botocore.exceptions import ClientError

from cost_reports.config.accounts import AWSAccountConfig
from cost_reports.utils.auth import (
    AWS_BILLING_REGION,
    AZURE_MANAGEMENT_SCOPE,
    AuthenticationResult,
    AWSAuthenticator,
    AWSClientHandle,
    AzureAuthenticator,
    AzureClientHandle,
    MongoAtlasAuthenticator,
    MongoAtlasClientHandle,
)

STS_CREDENTIALS = {
    "Credentials": {"AccessKeyId": "AKIA", "SecretAccessKey": "secret", "SessionToken": "session"}
}


class TestAuthenticationResult:
    """Test cases for the AuthenticationResult model."""

    def test_success(self):
        result = AuthenticationResult.create_success("aws", "default_chain", credentials="handle")
        assert result.success
        assert result.credentials == "handle"

    def test_failure_message_is_trimmed(self):
        result = AuthenticationResult.create_failure("aws", "default_chain", "  denied  ")
        assert not result.success
        assert result.error_message == "denied"

    def test_to_dict_excludes_credentials(self):
        result = AuthenticationResult.create_success("aws", "default_chain", credentials="secret-handle")
        assert "credentials" not in result.to_dict()


class TestAWSAuthenticator:
    """Test cases for STS assume-role authentication."""

    @pytest.mark.asyncio
    async def test_assume_role_with_default_chain(self, aws_account):
        with patch("cost_reports.utils.auth.boto3") as mock_boto3:
            sts, ce = MagicMock(), MagicMock()
            sts.assume_role.return_value = STS_CREDENTIALS
            mock_boto3.client.side_effect = [sts, ce]

            result = await AWSAuthenticator({"role_session_name": "reports"}).authenticate(aws_account)

        assert result.success
        assert result.method == "default_chain"
        assert result.credentials == AWSClientHandle(cost_explorer=ce, account_id="123456789012")
        sts.assume_role.assert_called_once_with(
            RoleArn="arn:aws:iam::123456789012:role/CostReader", RoleSessionName="reports"
        )
        sts_call, ce_call = mock_boto3.client.call_args_list
        assert sts_call.args == ("sts",)
        assert sts_call.kwargs == {"region_name": AWS_BILLING_REGION}
        assert ce_call.args == ("ce",)
        assert ce_call.kwargs["aws_session_token"] == "session"

    @pytest.mark.asyncio
    async def test_assume_role_with_static_keys(self):
        account = AWSAccountConfig(
            name="prod",
            account_id="1",
            assumed_role_name="Reader",
            access_key_id="AKIA-STATIC",
            access_key_secret="static-secret",
        )
        with patch("cost_reports.utils.auth.boto3") as mock_boto3:
            sts = MagicMock()
            sts.assume_role.return_value = STS_CREDENTIALS
            mock_boto3.client.side_effect = [sts, MagicMock()]

            result = await AWSAuthenticator().authenticate(account)

        assert result.method == "access_keys"
        assert mock_boto3.client.call_args_list[0].kwargs["aws_access_key_id"] == "AKIA-STATIC"

    @pytest.mark.asyncio
    async def test_assume_role_failure(self, aws_account):
        with patch("cost_reports.utils.auth.boto3") as mock_boto3:
            sts = MagicMock()
            sts.assume_role.side_effect = ClientError(
                {"Error": {"Code": "AccessDenied", "Message": "not allowed"}}, "AssumeRole"
            )
            mock_boto3.client.return_value = sts

            result = await AWSAuthenticator().authenticate(aws_account)

        assert not result.success
        assert "not allowed" in result.error_message
        assert result.credentials is None


class TestAzureAuthenticator:
    """Test cases for service principal authentication."""

    @pytest.mark.asyncio
    async def test_builds_client_secret_credential(self, azure_account):
        with patch("cost_reports.utils.auth.ClientSecretCredential") as mock_credential:
            result = await AzureAuthenticator().authenticate(azure_account)

        assert result.success
        mock_credential.assert_called_once_with(tenant_id="tenant-1", client_id="client-1", client_secret="secret-1")
        assert result.credentials.subscription_id == "sub-1"

    @pytest.mark.asyncio
    async def test_bearer_token(self):
        credential = MagicMock()
        credential.get_token.return_value = MagicMock(token="abc")
        handle = AzureClientHandle(credential=credential, subscription_id="sub-1")

        assert await handle.bearer_token() == "abc"
        credential.get_token.assert_called_once_with(AZURE_MANAGEMENT_SCOPE)


class TestMongoAtlasAuthenticator:
    """Test cases for API key authentication."""

    @pytest.mark.asyncio
    async def test_returns_digest_handle(self, atlas_account):
        result = await MongoAtlasAuthenticator().authenticate(atlas_account)

        assert result.success
        assert result.credentials == MongoAtlasClientHandle(public_key="pub", private_key="priv", org_id="org-1")
        assert isinstance(result.credentials.digest_auth, httpx.DigestAuth)
