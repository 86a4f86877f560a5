from rest_framework import serializers

PIN_ERRORS = {
    'required': 'PIN must be exactly 4 digits',
    'blank': 'PIN must be exactly 4 digits',
    'null': 'PIN must be exactly 4 digits',
    'invalid': 'PIN must be exactly 4 digits',
}


class SnapshotSerializer(serializers.Serializer):
    """Synchronized data fields; every one optional so pushes can be partial."""
    todos = serializers.ListField(child=serializers.DictField(), required=False, allow_null=True)
    recurringTasks = serializers.ListField(child=serializers.DictField(), required=False, allow_null=True)
    pauseLogs = serializers.ListField(child=serializers.DictField(), required=False, allow_null=True)
    timerState = serializers.DictField(required=False, allow_null=True)
    recurringAddedDates = serializers.ListField(
        child=serializers.CharField(allow_blank=True, trim_whitespace=False), required=False, allow_null=True,
    )


class SetupSerializer(serializers.Serializer):
    pin = serializers.RegexField(r'^[0-9]{4}$', error_messages=PIN_ERRORS)
    existingData = SnapshotSerializer(required=False, allow_null=True)


class LoginSerializer(serializers.Serializer):
    syncCode = serializers.CharField(error_messages={
        'required': 'Sync code and PIN are required',
        'blank': 'Sync code and PIN are required',
        'null': 'Sync code and PIN are required',
    })
    pin = serializers.CharField(error_messages={
        'required': 'Sync code and PIN are required',
        'blank': 'Sync code and PIN are required',
        'null': 'Sync code and PIN are required',
    })


def first_error(errors) -> str:
    """Flatten DRF's nested error structure into one human-readable message."""
    if isinstance(errors, dict):
        for key, value in errors.items():
            message = first_error(value)
            if not message:
                continue
            # pin/syncCode messages come from our own error_messages and already read well.
            if key in ('non_field_errors', 'pin', 'syncCode') or not isinstance(key, str):
                return message
            return f"{key}: {message}"
        return ''
    if isinstance(errors, (list, tuple)):
        for value in errors:
            message = first_error(value)
            if message:
                return message
        return ''
    return str(errors)
