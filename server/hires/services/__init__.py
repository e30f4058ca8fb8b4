"""Workflow services for the `hires` app.

`jobs` is the job store; the orchestrators build on it:
`payment.PaymentService`, `upscaling.UpscalingService` and
`downloads.DownloadService`.
"""
