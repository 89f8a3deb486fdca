# Unless explicitly stated otherwise all files in this repository are licensed under the Apache-2 License.
#
# This product includes software developed by the deploy-identity contributors. Copyright 2025.
