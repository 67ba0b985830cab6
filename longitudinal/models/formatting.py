import io
import matplotlib.pyplot as plt

def fig_to_svg(fig, close=True):
    # Set figure and axes backgrounds to transparent
    fig.patch.set_alpha(0.0)
    for ax in fig.get_axes():
        ax.patch.set_alpha(0.0)
        # Make legend background transparent if it exists
        if ax.get_legend() is not None:
            ax.get_legend().get_frame().set_alpha(0.0)

    buf = io.BytesIO()
    fig.savefig(buf, format='svg', bbox_inches='tight', transparent=True)
    buf.seek(0)
    svg_string = buf.getvalue().decode('utf-8')
    buf.close()
    if close:
        plt.close(fig)
    return svg_string

# One colour per drug arm, then extras for weeks / models
PASTEL_COLORS = ['#BAE1FF', '#FFB3BA', '#BAFFC9', '#FFFFBA', '#FFB3F7', '#B3FFF7']
