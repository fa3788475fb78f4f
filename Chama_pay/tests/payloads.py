"""Gateway callback bodies shared by the test modules."""


def stk_callback(result_code=0, checkout_request_id='ws_CO_191220191020363925', receipt='NLJ7RT61SV',
                 amount=1000, phone=254712345678, result_desc=None):
    callback = {
        'MerchantRequestID': '29115-34620561-1',
        'CheckoutRequestID': checkout_request_id,
        'ResultCode': result_code,
        'ResultDesc': result_desc or (
            'The service request is processed successfully.' if result_code == 0
            else 'Request cancelled by user'
        ),
    }
    if result_code == 0:
        callback['CallbackMetadata'] = {
            'Item': [
                {'Name': 'Amount', 'Value': amount},
                {'Name': 'MpesaReceiptNumber', 'Value': receipt},
                {'Name': 'Balance'},
                {'Name': 'TransactionDate', 'Value': 20191219102115},
                {'Name': 'PhoneNumber', 'Value': phone},
            ]
        }
    return {'Body': {'stkCallback': callback}}


def b2c_callback(result_code=0, conversation_id='AG_20191219_00005797af5d7d75f652', receipt='NLJ41HAY6Q',
                 amount=500, phone='254712345678 - John Doe', result_desc=None):
    result = {
        'ResultType': 0,
        'ResultCode': result_code,
        'ResultDesc': result_desc or (
            'The service request is processed successfully.' if result_code == 0
            else 'The balance is insufficient for the transaction.'
        ),
        'OriginatorConversationID': '16740-34861180-1',
        'ConversationID': conversation_id,
        'TransactionID': receipt,
    }
    if result_code == 0:
        result['ResultParameters'] = {
            'ResultParameter': [
                {'Key': 'TransactionAmount', 'Value': amount},
                {'Key': 'TransactionReceipt', 'Value': receipt},
                {'Key': 'ReceiverPartyPublicName', 'Value': phone},
                {'Key': 'TransactionCompletedDateTime', 'Value': '19.12.2019 11:45:50'},
                {'Key': 'RecipientPhoneNumber', 'Value': phone},
            ]
        }
    return {'Result': result}
