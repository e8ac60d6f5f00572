"""
BiRefNet ONNX segmentation package.

Exposes reusable primitives for loading the ONNX model, preprocessing
images, running inference, compositing cutouts and driving folder batches.
"""
